"""
Shopify Admin API gateway.

Every read and write the handlers need goes through one of two classes:

- ShopifyGateway talks to the Admin GraphQL API.
- DryRunGateway wraps another gateway, passes reads through and turns every
  write into a logged no-op that reports "skipped".

Which one the service uses is decided once, in build_gateway().

Ids are kept as the numeric legacy ids the webhooks carry; they are turned
into GraphQL gids only at the wire.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import requests

from . import tags as tagset
from .auth import TokenCache, client_credentials_fetcher
from .config import Settings
from .errors import UpstreamError

log = logging.getLogger(__name__)

WRITE_OK = "ok"
WRITE_WARNING = "warning"
WRITE_ERROR = "error"
WRITE_SKIPPED = "skipped"

# displayFulfillmentStatus values that still mean "nothing shipped yet".
_UNSHIPPED_DISPLAY = {
    "UNFULFILLED",
    "ON_HOLD",
    "OPEN",
    "IN_PROGRESS",
    "SCHEDULED",
    "PENDING_FULFILLMENT",
    "REQUEST_DECLINED",
}


@dataclass
class WriteResult:
    status: str
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status in (WRITE_OK, WRITE_SKIPPED)


@dataclass
class FulfillmentUnit:
    id: str
    status: str

    @property
    def is_active(self) -> bool:
        return self.status not in ("closed", "cancelled")


@dataclass
class OrderSummary:
    id: str
    name: str
    tags: str
    fulfillment_status: str


@dataclass
class OrderSnapshot:
    id: str
    name: str
    tags: str
    shipping_method: str
    customer_id: Optional[str]
    fulfillment_status: str
    fulfillment_units: List[FulfillmentUnit] = field(default_factory=list)

    @property
    def fulfillment_unit_ids(self) -> List[str]:
        return [u.id for u in self.fulfillment_units]


# ----------------------------
# Id / status helpers
# ----------------------------
def to_gid(kind: str, legacy_id: Any) -> str:
    s = str(legacy_id)
    if s.startswith("gid://"):
        return s
    return f"gid://shopify/{kind}/{s}"


def legacy_id(gid: Optional[str]) -> Optional[str]:
    if not gid:
        return None
    return str(gid).rsplit("/", 1)[-1]


def fulfillment_status_from_display(display: Optional[str]) -> str:
    if not display:
        return "none"
    d = str(display).upper()
    if d == "FULFILLED":
        return "fulfilled"
    if d == "PARTIALLY_FULFILLED":
        return "partial"
    if d in _UNSHIPPED_DISPLAY:
        return "unfulfilled"
    return d.lower()


def _user_errors(payload: Optional[Dict[str, Any]]) -> str:
    errs = (payload or {}).get("userErrors") or []
    return "; ".join(f"{'.'.join(e.get('field') or [])}: {e.get('message')}".lstrip(": ") for e in errs)


def _units(nodes: Optional[List[Dict[str, Any]]]) -> List[FulfillmentUnit]:
    return [
        FulfillmentUnit(id=legacy_id(n.get("id")) or "", status=str(n.get("status") or "").lower())
        for n in (nodes or [])
        if n.get("id")
    ]


# ----------------------------
# GraphQL documents
# ----------------------------
ORDER_QUERY = """
query Order($id: ID!) {
  order(id: $id) {
    id
    name
    tags
    displayFulfillmentStatus
    customer { id }
    shippingLine { title }
    fulfillmentOrders(first: 50) { nodes { id status } }
  }
}
"""

CUSTOMER_ORDERS_QUERY = """
query CustomerOrders($query: String!, $after: String) {
  orders(first: 100, after: $after, query: $query, sortKey: CREATED_AT) {
    nodes { id name tags displayFulfillmentStatus }
    pageInfo { hasNextPage endCursor }
  }
}
"""

FULFILLMENT_ORDERS_QUERY = """
query FulfillmentOrders($id: ID!) {
  order(id: $id) {
    fulfillmentOrders(first: 50) { nodes { id status } }
  }
}
"""

ORDER_UPDATE_MUTATION = """
mutation OrderUpdate($input: OrderInput!) {
  orderUpdate(input: $input) {
    order { id tags }
    userErrors { field message }
  }
}
"""

HOLD_MUTATION = """
mutation Hold($id: ID!, $hold: FulfillmentOrderHoldInput!) {
  fulfillmentOrderHold(id: $id, fulfillmentHold: $hold) {
    fulfillmentOrder { id status }
    userErrors { field message }
  }
}
"""

RELEASE_HOLD_MUTATION = """
mutation ReleaseHold($id: ID!) {
  fulfillmentOrderReleaseHold(id: $id) {
    fulfillmentOrder { id status }
    userErrors { field message }
  }
}
"""

FULFILLMENT_CREATE_MUTATION = """
mutation FulfillmentCreate($fulfillment: FulfillmentInput!, $message: String) {
  fulfillmentCreate(fulfillment: $fulfillment, message: $message) {
    fulfillment { id status }
    userErrors { field message }
  }
}
"""


def retry_request(func, retries: int = 3, delay: float = 1.0, backoff: float = 2.0):
    last_err = None
    for attempt in range(1, retries + 1):
        try:
            return func()
        except requests.RequestException as e:
            last_err = e
            log.warning(f"Request failed (attempt {attempt}/{retries}): {e}")
            if attempt < retries:
                time.sleep(delay)
                delay *= backoff
    raise UpstreamError(f"Max retries reached for an API call. Last error: {last_err}")


class ShopifyGateway:
    def __init__(self, shop: str, api_version: str, tokens: TokenCache, timeout: int = 30, session: Optional[requests.Session] = None) -> None:
        self.url = f"https://{shop}/admin/api/{api_version}/graphql.json"
        self.tokens = tokens
        self.timeout = timeout
        self.session = session or requests.Session()

    # ----------------------------
    # Transport
    # ----------------------------
    def _post(self, query: str, variables: Dict[str, Any]) -> requests.Response:
        headers = {
            "X-Shopify-Access-Token": self.tokens.get(),
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        return self.session.post(self.url, headers=headers, json={"query": query, "variables": variables}, timeout=self.timeout)

    def _graphql(self, query: str, variables: Dict[str, Any], retry: bool) -> Dict[str, Any]:
        def _do():
            return self._post(query, variables)

        resp = retry_request(_do) if retry else retry_request(_do, retries=1)
        if resp.status_code == 401:
            log.info("Admin API answered 401, refreshing access token and retrying once")
            self.tokens.refresh()
            resp = retry_request(_do, retries=1)

        text = resp.text or ""
        if resp.status_code >= 400:
            raise UpstreamError(f"Shopify GraphQL failed {resp.status_code}: {text[:500]}", resp.status_code, text)
        try:
            body = resp.json()
        except ValueError:
            raise UpstreamError(f"Shopify GraphQL response was not valid JSON. First 500 chars: {text[:500]}", resp.status_code, text)
        if body.get("errors"):
            raise UpstreamError(f"Shopify GraphQL errors: {body['errors']}", resp.status_code, text)
        return body.get("data") or {}

    def _query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        return self._graphql(query, variables, retry=True)

    def _mutate(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        return self._graphql(query, variables, retry=False)

    # ----------------------------
    # Reads
    # ----------------------------
    def fetch_order(self, order_id: str) -> OrderSnapshot:
        data = self._query(ORDER_QUERY, {"id": to_gid("Order", order_id)})
        order = data.get("order")
        if not order:
            raise UpstreamError(f"Order {order_id} not found")
        return OrderSnapshot(
            id=legacy_id(order.get("id")) or str(order_id),
            name=str(order.get("name") or ""),
            tags=tagset.serialize(order.get("tags") or []),
            shipping_method=str((order.get("shippingLine") or {}).get("title") or "").strip(),
            customer_id=legacy_id((order.get("customer") or {}).get("id")),
            fulfillment_status=fulfillment_status_from_display(order.get("displayFulfillmentStatus")),
            fulfillment_units=_units((order.get("fulfillmentOrders") or {}).get("nodes")),
        )

    def list_customer_orders(self, customer_id: str) -> List[OrderSummary]:
        out: List[OrderSummary] = []
        after: Optional[str] = None
        while True:
            data = self._query(CUSTOMER_ORDERS_QUERY, {"query": f"customer_id:{customer_id}", "after": after})
            conn = data.get("orders") or {}
            for node in conn.get("nodes") or []:
                out.append(
                    OrderSummary(
                        id=legacy_id(node.get("id")) or "",
                        name=str(node.get("name") or ""),
                        tags=tagset.serialize(node.get("tags") or []),
                        fulfillment_status=fulfillment_status_from_display(node.get("displayFulfillmentStatus")),
                    )
                )
            page = conn.get("pageInfo") or {}
            if not page.get("hasNextPage"):
                break
            after = page.get("endCursor")
        return out

    def list_fulfillment_units(self, order_id: str) -> List[FulfillmentUnit]:
        data = self._query(FULFILLMENT_ORDERS_QUERY, {"id": to_gid("Order", order_id)})
        order = data.get("order") or {}
        return _units((order.get("fulfillmentOrders") or {}).get("nodes"))

    # ----------------------------
    # Writes
    # ----------------------------
    def update_tags(self, order_id: str, tag_text: str) -> WriteResult:
        data = self._mutate(
            ORDER_UPDATE_MUTATION,
            {"input": {"id": to_gid("Order", order_id), "tags": sorted(tagset.parse(tag_text))}},
        )
        errs = _user_errors(data.get("orderUpdate"))
        if errs:
            return WriteResult(WRITE_ERROR, errs)
        return WriteResult(WRITE_OK)

    def hold_fulfillment_units(self, unit_ids: Sequence[str], reason_note: str) -> Dict[str, WriteResult]:
        results: Dict[str, WriteResult] = {}
        for uid in unit_ids:
            data = self._mutate(
                HOLD_MUTATION,
                {"id": to_gid("FulfillmentOrder", uid), "hold": {"reason": "OTHER", "reasonNotes": reason_note}},
            )
            errs = _user_errors(data.get("fulfillmentOrderHold"))
            results[uid] = WriteResult(WRITE_WARNING, errs) if errs else WriteResult(WRITE_OK)
        return results

    def release_fulfillment_hold(self, unit_id: str) -> WriteResult:
        data = self._mutate(RELEASE_HOLD_MUTATION, {"id": to_gid("FulfillmentOrder", unit_id)})
        errs = _user_errors(data.get("fulfillmentOrderReleaseHold"))
        return WriteResult(WRITE_WARNING, errs) if errs else WriteResult(WRITE_OK)

    def create_fulfillment(
        self,
        order_id: str,
        unit_id: str,
        tracking_number: str,
        tracking_company: Optional[str],
        tracking_url: Optional[str],
        message: str,
    ) -> WriteResult:
        tracking: Dict[str, Any] = {"number": tracking_number}
        if tracking_company:
            tracking["company"] = tracking_company
        if tracking_url:
            tracking["url"] = tracking_url
        fulfillment = {
            "lineItemsByFulfillmentOrder": [{"fulfillmentOrderId": to_gid("FulfillmentOrder", unit_id)}],
            "trackingInfo": tracking,
            "notifyCustomer": False,
        }
        data = self._mutate(FULFILLMENT_CREATE_MUTATION, {"fulfillment": fulfillment, "message": message})
        errs = _user_errors(data.get("fulfillmentCreate"))
        if errs:
            return WriteResult(WRITE_ERROR, f"order {order_id}: {errs}")
        return WriteResult(WRITE_OK)


class DryRunGateway:
    """Reads pass through to `inner`; writes are logged and reported as skipped."""

    def __init__(self, inner) -> None:
        self.inner = inner

    def fetch_order(self, order_id: str) -> OrderSnapshot:
        return self.inner.fetch_order(order_id)

    def list_customer_orders(self, customer_id: str) -> List[OrderSummary]:
        return self.inner.list_customer_orders(customer_id)

    def list_fulfillment_units(self, order_id: str) -> List[FulfillmentUnit]:
        return self.inner.list_fulfillment_units(order_id)

    def update_tags(self, order_id: str, tag_text: str) -> WriteResult:
        log.info(f"[DRY_RUN] Would set tags on order {order_id} -> {tag_text!r}")
        return WriteResult(WRITE_SKIPPED)

    def hold_fulfillment_units(self, unit_ids: Sequence[str], reason_note: str) -> Dict[str, WriteResult]:
        for uid in unit_ids:
            log.info(f"[DRY_RUN] Would hold fulfillment order {uid} ({reason_note})")
        return {uid: WriteResult(WRITE_SKIPPED) for uid in unit_ids}

    def release_fulfillment_hold(self, unit_id: str) -> WriteResult:
        log.info(f"[DRY_RUN] Would release hold on fulfillment order {unit_id}")
        return WriteResult(WRITE_SKIPPED)

    def create_fulfillment(
        self,
        order_id: str,
        unit_id: str,
        tracking_number: str,
        tracking_company: Optional[str],
        tracking_url: Optional[str],
        message: str,
    ) -> WriteResult:
        log.info(f"[DRY_RUN] Would fulfill order {order_id} fulfillment order {unit_id} with tracking {tracking_number}")
        return WriteResult(WRITE_SKIPPED)


def build_gateway(settings: Settings, tokens: Optional[TokenCache] = None):
    if tokens is None:
        if settings.admin_token:
            tokens = TokenCache.static(settings.admin_token)
        else:
            tokens = TokenCache(client_credentials_fetcher(settings.shop, settings.api_key, settings.api_secret))
    gateway = ShopifyGateway(settings.shop, settings.api_version, tokens)
    if settings.dry_run:
        log.info("DRY_RUN enabled: writes to Shopify will be logged and skipped.")
        return DryRunGateway(gateway)
    return gateway
