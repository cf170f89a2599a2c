"""
fulfillments/create handling: ship a customer's held orders with the tracking
of their express order.

Preconditions, checked in this order, each ending the invocation:
  no order id, no tracking number yet, order is not express,
  order has no customer, order already MERGE_DONE.

Then, for every order of the same customer tagged HOLD and still unshipped
(or partially shipped, which is what an interrupted merge leaves behind),
one at a time:
  a) re-read it (skip if another merge already took it off HOLD)
  b) release the hold on every open fulfillment order
  c) fulfill each of those with the express order's tracking
  d) retag: -HOLD +MERGE_DONE
and finally retag the express order: -MERGE_IN_PROGRESS +MERGE_DONE.

That last write is what closes the merge. Every step before it can be repeated
by a later delivery of the same event without doing damage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import tags as tagset
from .classifier import matches_method
from .config import Settings
from .errors import TagStateError
from .results import HandlerResult, Outcome
from .tags import OrderState, Tag

log = logging.getLogger(__name__)

MERGEABLE_FULFILLMENT_STATUSES = ("none", "unfulfilled")
# A merge interrupted between two fulfillments leaves the order partial and still HOLD.
RESUMABLE_FULFILLMENT_STATUSES = ("partial",)


@dataclass
class Tracking:
    number: str
    company: Optional[str] = None
    url: Optional[str] = None


def _first(payload: Dict[str, Any], single: str, plural: str) -> Optional[str]:
    val = payload.get(single)
    if not val:
        many = payload.get(plural) or []
        val = many[0] if isinstance(many, list) and many else None
    val = str(val).strip() if val else ""
    return val or None


def extract_tracking(payload: Dict[str, Any]) -> Optional[Tracking]:
    number = _first(payload, "tracking_number", "tracking_numbers")
    if not number:
        return None
    company = str(payload.get("tracking_company") or "").strip() or None
    return Tracking(number=number, company=company, url=_first(payload, "tracking_url", "tracking_urls"))


def merge_message(trigger_name: str) -> str:
    return f"Shipped together with order {trigger_name}"


def handle_fulfillment_created(gateway, settings: Settings, payload: Dict[str, Any]) -> HandlerResult:
    order_id = payload.get("order_id")
    if not order_id:
        log.info("fulfillments/create without an order id, nothing to do")
        return HandlerResult(Outcome.NO_ORDER_ID)
    order_id = str(order_id)

    tracking = extract_tracking(payload)
    if tracking is None:
        log.info(f"Order {order_id}: fulfillment has no tracking number yet, skipping")
        return HandlerResult(Outcome.NO_TRACKING, order_id=order_id)

    trigger = gateway.fetch_order(order_id)
    if not matches_method(trigger.shipping_method, settings.express_method) and not tagset.has(trigger.tags, Tag.EXPRESS_NOW):
        log.info(f"Order {order_id}: not an express order ({trigger.shipping_method!r}), skipping")
        return HandlerResult(Outcome.NOT_EXPRESS, order_id=order_id)

    if not trigger.customer_id:
        log.info(f"Order {order_id}: no customer on the order, nothing to merge")
        return HandlerResult(Outcome.NO_CUSTOMER, order_id=order_id)

    if tagset.derive_state(trigger.tags) == OrderState.MERGE_DONE:
        log.info(f"Order {order_id}: already {Tag.MERGE_DONE.value}, duplicate fulfillments/create ignored")
        return HandlerResult(Outcome.ALREADY_MERGED, order_id=order_id)

    # Validated up front so an illegal tag set stops us before any write.
    closing_tags = tagset.transition(trigger.tags, add_tags=[Tag.MERGE_DONE], remove_tags=[Tag.MERGE_IN_PROGRESS])

    result = HandlerResult(Outcome.MERGED, order_id=order_id)
    mergeable = find_mergeable(gateway, trigger.customer_id, exclude_order_id=trigger.id)
    log.info(
        f"Order {trigger.name or order_id}: {len(mergeable)} held order(s) to merge for customer {trigger.customer_id} "
        f"with tracking {tracking.number}"
    )

    for summary in mergeable:
        merged = _merge_one(gateway, summary.id, trigger.name or order_id, tracking, result.warnings)
        if merged:
            result.merged_order_ids.append(summary.id)

    res = gateway.update_tags(trigger.id, closing_tags)
    if not res.ok:
        log.error(f"Order {trigger.id}: closing merge tags failed, order stays {Tag.MERGE_IN_PROGRESS.value}: {res.detail}")
        result.warnings.append(f"update_tags {trigger.id}: {res.detail}")
    else:
        log.info(
            f"Order {trigger.id}: merge closed ({res.status}), merged {len(result.merged_order_ids)} order(s): "
            f"{', '.join(result.merged_order_ids) or '-'}"
        )
    return result


def find_mergeable(gateway, customer_id: str, exclude_order_id: Optional[str] = None) -> List:
    out = []
    for o in gateway.list_customer_orders(customer_id):
        if o.id == exclude_order_id:
            continue
        if not tagset.has(o.tags, Tag.HOLD):
            continue
        if o.fulfillment_status in RESUMABLE_FULFILLMENT_STATUSES:
            log.info(f"Order {o.id}: tagged {Tag.HOLD.value} and {o.fulfillment_status}, resuming its merge")
        elif o.fulfillment_status not in MERGEABLE_FULFILLMENT_STATUSES:
            log.info(f"Order {o.id}: tagged {Tag.HOLD.value} but fulfillment status is {o.fulfillment_status}, not merging")
            continue
        out.append(o)
    return out


def _merge_one(gateway, order_id: str, trigger_name: str, tracking: Tracking, warnings: List[str]) -> bool:
    held = gateway.fetch_order(order_id)
    if not tagset.has(held.tags, Tag.HOLD):
        log.info(f"Order {order_id}: no longer tagged {Tag.HOLD.value} (taken by another merge), skipping")
        return False

    try:
        new_tags = tagset.transition(held.tags, add_tags=[Tag.MERGE_DONE], remove_tags=[Tag.HOLD])
    except TagStateError as e:
        log.error(f"Order {order_id}: {e}, skipping")
        warnings.append(f"tags {order_id}: {e}")
        return False

    units = [u for u in held.fulfillment_units if u.is_active]
    if not units:
        if held.fulfillment_status in RESUMABLE_FULFILLMENT_STATUSES:
            log.warning(f"Order {order_id}: {held.fulfillment_status} with no open fulfillment orders, leaving it alone")
            return False
        log.warning(f"Order {order_id}: no open fulfillment orders to ship")

    for u in units:
        res = gateway.release_fulfillment_hold(u.id)
        if not res.ok:
            log.warning(f"Order {order_id}: release hold on fulfillment order {u.id} reported: {res.detail}")
            warnings.append(f"release {u.id}: {res.detail}")

    for u in units:
        res = gateway.create_fulfillment(order_id, u.id, tracking.number, tracking.company, tracking.url, merge_message(trigger_name))
        if not res.ok:
            log.warning(f"Order {order_id}: fulfilling fulfillment order {u.id} reported: {res.detail}")
            warnings.append(f"fulfill {u.id}: {res.detail}")
        else:
            log.info(f"Order {order_id}: fulfillment order {u.id} shipped with tracking {tracking.number} ({res.status})")

    res = gateway.update_tags(order_id, new_tags)
    if not res.ok:
        log.error(f"Order {order_id}: retagging after merge failed: {res.detail}")
        warnings.append(f"update_tags {order_id}: {res.detail}")
    return True
