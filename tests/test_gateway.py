"""ShopifyGateway against a mocked requests session, and the dry-run wrapper."""

import json
import logging
from unittest.mock import MagicMock, patch

import pytest
import requests

from express_merge.auth import TokenCache
from express_merge.config import Settings
from express_merge.errors import UpstreamError
from express_merge.gateway import (
    WRITE_ERROR,
    WRITE_OK,
    WRITE_SKIPPED,
    WRITE_WARNING,
    DryRunGateway,
    ShopifyGateway,
    build_gateway,
    fulfillment_status_from_display,
)


def _resp(status=200, body=None):
    r = MagicMock()
    r.status_code = status
    r.text = json.dumps(body) if body is not None else ""
    r.json.return_value = body
    return r


def _gateway(*responses, tokens=None):
    session = MagicMock()
    session.post.side_effect = list(responses)
    gw = ShopifyGateway("shop.myshopify.com", "2025-01", tokens or TokenCache.static("tok"), session=session)
    return gw, session


def _sent(session, i=0):
    return session.post.call_args_list[i].kwargs["json"]


ORDER = {
    "order": {
        "id": "gid://shopify/Order/1001",
        "name": "#1001",
        "tags": ["vip", "HOLD"],
        "displayFulfillmentStatus": "ON_HOLD",
        "customer": {"id": "gid://shopify/Customer/77"},
        "shippingLine": {"title": "Accumulate "},
        "fulfillmentOrders": {"nodes": [{"id": "gid://shopify/FulfillmentOrder/5", "status": "ON_HOLD"}]},
    }
}


class TestReads:
    def test_fetch_order_maps_fields(self):
        gw, session = _gateway(_resp(body={"data": ORDER}))

        o = gw.fetch_order("1001")

        assert (o.id, o.name, o.tags, o.shipping_method) == ("1001", "#1001", "HOLD, vip", "Accumulate")
        assert (o.customer_id, o.fulfillment_status) == ("77", "unfulfilled")
        assert o.fulfillment_unit_ids == ["5"]
        assert o.fulfillment_units[0].status == "on_hold"
        assert _sent(session)["variables"] == {"id": "gid://shopify/Order/1001"}
        headers = session.post.call_args.kwargs["headers"]
        assert headers["X-Shopify-Access-Token"] == "tok"
        assert session.post.call_args.args[0] == "https://shop.myshopify.com/admin/api/2025-01/graphql.json"

    def test_missing_order_is_upstream_error(self):
        gw, _ = _gateway(_resp(body={"data": {"order": None}}))
        with pytest.raises(UpstreamError):
            gw.fetch_order("1")

    def test_list_customer_orders_follows_pages(self):
        page1 = {"orders": {"nodes": [{"id": "gid://shopify/Order/1", "name": "#1", "tags": ["HOLD"], "displayFulfillmentStatus": "UNFULFILLED"}],
                            "pageInfo": {"hasNextPage": True, "endCursor": "c1"}}}
        page2 = {"orders": {"nodes": [{"id": "gid://shopify/Order/2", "name": "#2", "tags": [], "displayFulfillmentStatus": "FULFILLED"}],
                            "pageInfo": {"hasNextPage": False, "endCursor": None}}}
        gw, session = _gateway(_resp(body={"data": page1}), _resp(body={"data": page2}))

        orders = gw.list_customer_orders("77")

        assert [(o.id, o.tags, o.fulfillment_status) for o in orders] == [("1", "HOLD", "unfulfilled"), ("2", "", "fulfilled")]
        assert _sent(session, 0)["variables"] == {"query": "customer_id:77", "after": None}
        assert _sent(session, 1)["variables"] == {"query": "customer_id:77", "after": "c1"}

    def test_list_fulfillment_units(self):
        body = {"data": {"order": {"fulfillmentOrders": {"nodes": [{"id": "gid://shopify/FulfillmentOrder/9", "status": "OPEN"}]}}}}
        gw, _ = _gateway(_resp(body=body))
        units = gw.list_fulfillment_units("1")
        assert [(u.id, u.status, u.is_active) for u in units] == [("9", "open", True)]

    def test_transport_errors_on_reads_are_retried(self):
        gw, session = _gateway(requests.ConnectionError("reset"), _resp(body={"data": ORDER}))
        with patch("express_merge.gateway.time.sleep") as sleep:
            assert gw.fetch_order("1001").id == "1001"
        assert session.post.call_count == 2
        sleep.assert_called_once_with(1.0)

    def test_http_error_is_upstream_error(self):
        gw, _ = _gateway(_resp(503, body={"errors": "unavailable"}))
        with pytest.raises(UpstreamError) as exc:
            gw.fetch_order("1")
        assert exc.value.status_code == 503

    def test_graphql_errors_are_upstream_error(self):
        gw, _ = _gateway(_resp(body={"errors": [{"message": "Throttled"}]}))
        with pytest.raises(UpstreamError):
            gw.list_fulfillment_units("1")

    def test_401_refreshes_token_once(self):
        fetch = MagicMock(side_effect=[("old", None), ("new", None)])
        gw, session = _gateway(_resp(401, body={"errors": "bad token"}), _resp(body={"data": ORDER}), tokens=TokenCache(fetch))

        gw.fetch_order("1001")

        tokens_used = [c.kwargs["headers"]["X-Shopify-Access-Token"] for c in session.post.call_args_list]
        assert tokens_used == ["old", "new"]


class TestWrites:
    def test_update_tags_sends_tag_list(self):
        gw, session = _gateway(_resp(body={"data": {"orderUpdate": {"order": {}, "userErrors": []}}}))
        assert gw.update_tags("1", "vip, HOLD").status == WRITE_OK
        assert _sent(session)["variables"] == {"input": {"id": "gid://shopify/Order/1", "tags": ["HOLD", "vip"]}}

    def test_update_tags_user_error(self):
        body = {"data": {"orderUpdate": {"order": None, "userErrors": [{"field": ["tags"], "message": "too long"}]}}}
        gw, _ = _gateway(_resp(body=body))
        res = gw.update_tags("1", "x")
        assert (res.status, res.detail) == (WRITE_ERROR, "tags: too long")

    def test_hold_reports_per_unit(self):
        ok = {"data": {"fulfillmentOrderHold": {"fulfillmentOrder": {}, "userErrors": []}}}
        warn = {"data": {"fulfillmentOrderHold": {"fulfillmentOrder": None, "userErrors": [{"field": ["id"], "message": "already on hold"}]}}}
        gw, session = _gateway(_resp(body=ok), _resp(body=warn))

        out = gw.hold_fulfillment_units(["5", "6"], "note")

        assert out["5"].status == WRITE_OK
        assert (out["6"].status, out["6"].detail) == (WRITE_WARNING, "id: already on hold")
        assert _sent(session)["variables"] == {"id": "gid://shopify/FulfillmentOrder/5", "hold": {"reason": "OTHER", "reasonNotes": "note"}}

    def test_release_hold_warning(self):
        body = {"data": {"fulfillmentOrderReleaseHold": {"userErrors": [{"field": None, "message": "not on hold"}]}}}
        gw, _ = _gateway(_resp(body=body))
        res = gw.release_fulfillment_hold("5")
        assert (res.status, res.detail) == (WRITE_WARNING, "not on hold")

    def test_create_fulfillment_payload(self):
        gw, session = _gateway(_resp(body={"data": {"fulfillmentCreate": {"fulfillment": {}, "userErrors": []}}}))

        res = gw.create_fulfillment("1", "5", "T123", "DHL", None, "Shipped together with order #1002")

        assert res.status == WRITE_OK
        variables = _sent(session)["variables"]
        assert variables["message"] == "Shipped together with order #1002"
        assert variables["fulfillment"] == {
            "lineItemsByFulfillmentOrder": [{"fulfillmentOrderId": "gid://shopify/FulfillmentOrder/5"}],
            "trackingInfo": {"number": "T123", "company": "DHL"},
            "notifyCustomer": False,
        }

    def test_mutations_are_not_retried(self):
        gw, session = _gateway(requests.ConnectionError("reset"), _resp(body={"data": {}}))
        with patch("express_merge.gateway.time.sleep") as sleep:
            with pytest.raises(UpstreamError):
                gw.release_fulfillment_hold("5")
        assert session.post.call_count == 1
        sleep.assert_not_called()


class TestDryRun:
    def test_reads_pass_through_and_writes_are_skipped(self, caplog):
        inner = MagicMock()
        inner.fetch_order.return_value = "snapshot"
        gw = DryRunGateway(inner)

        with caplog.at_level(logging.INFO):
            assert gw.fetch_order("1") == "snapshot"
            assert gw.update_tags("1", "HOLD").status == WRITE_SKIPPED
            assert {k: v.status for k, v in gw.hold_fulfillment_units(["5", "6"], "n").items()} == {"5": WRITE_SKIPPED, "6": WRITE_SKIPPED}
            assert gw.release_fulfillment_hold("5").status == WRITE_SKIPPED
            assert gw.create_fulfillment("1", "5", "T", None, None, "m").status == WRITE_SKIPPED

        inner.update_tags.assert_not_called()
        inner.hold_fulfillment_units.assert_not_called()
        inner.release_fulfillment_hold.assert_not_called()
        inner.create_fulfillment.assert_not_called()
        assert sum("[DRY_RUN] Would" in r.getMessage() for r in caplog.records) == 5

    def test_build_gateway_selects_variant(self):
        live = build_gateway(Settings(shop="s.myshopify.com", api_secret="x", admin_token="t"))
        dry = build_gateway(Settings(shop="s.myshopify.com", api_secret="x", admin_token="t", dry_run=True))
        assert isinstance(live, ShopifyGateway)
        assert isinstance(dry, DryRunGateway)
        assert isinstance(dry.inner, ShopifyGateway)


@pytest.mark.parametrize(
    "display,status",
    [(None, "none"), ("UNFULFILLED", "unfulfilled"), ("ON_HOLD", "unfulfilled"), ("PARTIALLY_FULFILLED", "partial"),
     ("FULFILLED", "fulfilled"), ("RESTOCKED", "restocked")],
)
def test_fulfillment_status_from_display(display, status):
    assert fulfillment_status_from_display(display) == status
