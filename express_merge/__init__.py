"""Shopify webhook automation: hold "accumulate" orders and ship them with the customer's next express order."""

__version__ = "0.1.0"
