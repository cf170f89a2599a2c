"""
orders/paid handling.

Rules:
1) Shipping method is the accumulate method => tag HOLD and put every
   fulfillment order on hold. Fulfillment orders may not exist yet when the
   webhook fires, so they are polled for.
2) Shipping method is the express method => tag EXPRESS_NOW + MERGE_IN_PROGRESS
   in one write, then wait for fulfillments/create (see merge.py).
   Orders already in MERGE_IN_PROGRESS / MERGE_DONE are left alone.
3) Anything else => ignored.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from . import tags as tagset
from .config import Settings
from .poller import poll_until_non_empty
from .results import HandlerResult, Outcome
from .tags import OrderState, Tag

log = logging.getLogger(__name__)

HOLD_REASON_NOTE = "Held for consolidation with a later express shipment"


# ----------------------------
# Shipping-method rules
# ----------------------------
def normalize(s: Optional[str]) -> str:
    return " ".join((s or "").strip().lower().split())


def matches_method(shipping_method: Optional[str], label: str) -> bool:
    sm = normalize(shipping_method)
    want = normalize(label)
    # Whole-label match only: "Non-Express Standard" is not "Express".
    return bool(want) and sm == want


def payload_shipping_method(payload: Dict[str, Any]) -> str:
    lines = payload.get("shipping_lines") or []
    if isinstance(lines, list) and lines and isinstance(lines[0], dict):
        return str(lines[0].get("title") or "").strip()
    return ""


def handle_order_paid(gateway, settings: Settings, payload: Dict[str, Any], sleep: Callable[[float], None] = time.sleep) -> HandlerResult:
    order_id = payload.get("id")
    if not order_id:
        log.info("orders/paid without an order id, nothing to do")
        return HandlerResult(Outcome.NO_ORDER_ID)
    order_id = str(order_id)

    order = gateway.fetch_order(order_id)
    shipping_method = order.shipping_method or payload_shipping_method(payload)
    log.info(f"Order {order.name or order_id} paid with shipping method {shipping_method!r} (tags={order.tags!r})")

    if matches_method(shipping_method, settings.accumulate_method):
        return _hold_order(gateway, settings, order, sleep)
    if matches_method(shipping_method, settings.express_method):
        return _tag_express(gateway, order)

    log.info(f"Order {order_id}: shipping method {shipping_method!r} is neither accumulate nor express, ignored")
    return HandlerResult(Outcome.IGNORED, order_id=order_id)


def _hold_order(gateway, settings: Settings, order, sleep) -> HandlerResult:
    result = HandlerResult(Outcome.HELD, order_id=order.id)

    new_tags = tagset.transition(order.tags, add_tags=[Tag.HOLD])
    if tagset.parse(new_tags) != tagset.parse(order.tags):
        res = gateway.update_tags(order.id, new_tags)
        if not res.ok:
            log.error(f"Order {order.id}: tagging {Tag.HOLD.value} failed: {res.detail}")
            result.warnings.append(f"update_tags {order.id}: {res.detail}")
        else:
            log.info(f"Order {order.id}: tagged {Tag.HOLD.value} ({res.status})")
    else:
        log.info(f"Order {order.id}: already tagged {Tag.HOLD.value}")

    units = order.fulfillment_units or poll_until_non_empty(
        lambda: gateway.list_fulfillment_units(order.id),
        settings.poll_schedule,
        sleep=sleep,
        what=f"fulfillment orders for order {order.id}",
    )
    if not units:
        log.warning(f"Order {order.id}: no fulfillment orders became visible, nothing put on hold")
        result.outcome = Outcome.HOLD_NO_UNITS
        return result

    to_hold = []
    for u in units:
        if not u.is_active:
            log.info(f"Order {order.id}: fulfillment order {u.id} is {u.status}, not holding")
        elif u.status == "on_hold":
            log.info(f"Order {order.id}: fulfillment order {u.id} already on hold")
        else:
            to_hold.append(u.id)

    if to_hold:
        for uid, res in gateway.hold_fulfillment_units(to_hold, HOLD_REASON_NOTE).items():
            if res.ok:
                log.info(f"Order {order.id}: fulfillment order {uid} on hold ({res.status})")
                result.held_unit_ids.append(uid)
            else:
                log.warning(f"Order {order.id}: hold on fulfillment order {uid} reported: {res.detail}")
                result.warnings.append(f"hold {uid}: {res.detail}")
    return result


def _tag_express(gateway, order) -> HandlerResult:
    state = tagset.derive_state(order.tags)
    if state in (OrderState.MERGE_IN_PROGRESS, OrderState.MERGE_DONE):
        log.info(f"Order {order.id}: already {state.value}, duplicate orders/paid ignored")
        return HandlerResult(Outcome.ALREADY_HANDLED, order_id=order.id)

    new_tags = tagset.transition(order.tags, add_tags=[Tag.EXPRESS_NOW, Tag.MERGE_IN_PROGRESS])
    result = HandlerResult(Outcome.EXPRESS_TAGGED, order_id=order.id)
    res = gateway.update_tags(order.id, new_tags)
    if not res.ok:
        log.error(f"Order {order.id}: express tagging failed: {res.detail}")
        result.warnings.append(f"update_tags {order.id}: {res.detail}")
    else:
        log.info(f"Order {order.id}: tagged {Tag.EXPRESS_NOW.value} + {Tag.MERGE_IN_PROGRESS.value} ({res.status}), waiting for fulfillment")
    return result
