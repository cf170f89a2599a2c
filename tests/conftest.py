"""Shared fixtures: an in-memory Shopify stand-in that records every write."""

from __future__ import annotations

import copy
from typing import Dict, List, Optional

import pytest

from express_merge import tags as tagset
from express_merge.config import Settings
from express_merge.gateway import (
    WRITE_OK,
    WRITE_WARNING,
    FulfillmentUnit,
    OrderSnapshot,
    OrderSummary,
    WriteResult,
)


class FakeShop:
    """Orders keyed by id. `hidden_reads[order_id]` makes its fulfillment orders invisible for that many reads."""

    def __init__(self) -> None:
        self.orders: Dict[str, dict] = {}
        self.hidden_reads: Dict[str, int] = {}
        self.writes: List[tuple] = []
        self.fulfillments: List[dict] = []
        self.hold_warnings: Dict[str, str] = {}
        self.fail_reads: Dict[str, Exception] = {}

    def add_order(
        self,
        order_id: str,
        customer_id: Optional[str] = "c1",
        shipping_method: str = "Accumulate",
        tags: str = "",
        fulfillment_status: str = "unfulfilled",
        units: Optional[List[FulfillmentUnit]] = None,
        name: Optional[str] = None,
    ) -> None:
        self.orders[order_id] = {
            "name": name or f"#{order_id}",
            "customer_id": customer_id,
            "shipping_method": shipping_method,
            "tags": tags,
            "fulfillment_status": fulfillment_status,
            "units": units if units is not None else [FulfillmentUnit(f"fo-{order_id}", "open")],
        }

    def units_of(self, order_id: str) -> List[FulfillmentUnit]:
        return self.orders[order_id]["units"]

    def _find_unit(self, unit_id: str):
        for oid, o in self.orders.items():
            for u in o["units"]:
                if u.id == unit_id:
                    return oid, u
        raise KeyError(unit_id)


class FakeGateway:
    def __init__(self, shop: FakeShop) -> None:
        self.shop = shop
        self.reads: List[tuple] = []

    # Reads
    def fetch_order(self, order_id):
        self.reads.append(("fetch_order", order_id))
        if order_id in self.shop.fail_reads:
            raise self.shop.fail_reads[order_id]
        o = self.shop.orders[order_id]
        units = [] if self.shop.hidden_reads.get(order_id, 0) > 0 else copy.deepcopy(o["units"])
        return OrderSnapshot(
            id=order_id,
            name=o["name"],
            tags=o["tags"],
            shipping_method=o["shipping_method"],
            customer_id=o["customer_id"],
            fulfillment_status=o["fulfillment_status"],
            fulfillment_units=units,
        )

    def list_customer_orders(self, customer_id):
        self.reads.append(("list_customer_orders", customer_id))
        return [
            OrderSummary(id=oid, name=o["name"], tags=o["tags"], fulfillment_status=o["fulfillment_status"])
            for oid, o in self.shop.orders.items()
            if o["customer_id"] == customer_id
        ]

    def list_fulfillment_units(self, order_id):
        self.reads.append(("list_fulfillment_units", order_id))
        if order_id in self.shop.fail_reads:
            raise self.shop.fail_reads[order_id]
        if self.shop.hidden_reads.get(order_id, 0) > 0:
            self.shop.hidden_reads[order_id] -= 1
            return []
        return copy.deepcopy(self.shop.orders[order_id]["units"])

    # Writes
    def update_tags(self, order_id, tag_text):
        self.shop.writes.append(("update_tags", order_id, tag_text))
        self.shop.orders[order_id]["tags"] = tagset.serialize(tagset.parse(tag_text))
        return WriteResult(WRITE_OK)

    def hold_fulfillment_units(self, unit_ids, reason_note):
        out = {}
        for uid in unit_ids:
            self.shop.writes.append(("hold", uid))
            if uid in self.shop.hold_warnings:
                out[uid] = WriteResult(WRITE_WARNING, self.shop.hold_warnings[uid])
                continue
            _, u = self.shop._find_unit(uid)
            u.status = "on_hold"
            out[uid] = WriteResult(WRITE_OK)
        return out

    def release_fulfillment_hold(self, unit_id):
        self.shop.writes.append(("release", unit_id))
        _, u = self.shop._find_unit(unit_id)
        if u.status != "on_hold":
            return WriteResult(WRITE_WARNING, "id: Fulfillment order is not on hold")
        u.status = "open"
        return WriteResult(WRITE_OK)

    def create_fulfillment(self, order_id, unit_id, tracking_number, tracking_company, tracking_url, message):
        self.shop.writes.append(("fulfill", order_id, unit_id, tracking_number))
        _, u = self.shop._find_unit(unit_id)
        u.status = "closed"
        self.shop.fulfillments.append(
            {
                "order_id": order_id,
                "unit_id": unit_id,
                "tracking_number": tracking_number,
                "tracking_company": tracking_company,
                "tracking_url": tracking_url,
                "message": message,
            }
        )
        units = self.shop.orders[order_id]["units"]
        self.shop.orders[order_id]["fulfillment_status"] = "fulfilled" if all(x.status == "closed" for x in units) else "partial"
        return WriteResult(WRITE_OK)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        shop="test-shop.myshopify.com",
        api_secret="hush",
        admin_token="shpat_test",
        accumulate_method="Accumulate",
        express_method="Express",
    )


@pytest.fixture
def shop() -> FakeShop:
    return FakeShop()


@pytest.fixture
def gateway(shop) -> FakeGateway:
    return FakeGateway(shop)


@pytest.fixture
def sleeps() -> List[float]:
    return []
