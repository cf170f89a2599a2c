from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class Outcome(str, Enum):
    # orders/paid
    HELD = "held"
    HOLD_NO_UNITS = "hold_no_units"
    EXPRESS_TAGGED = "express_tagged"
    ALREADY_HANDLED = "already_handled"
    IGNORED = "ignored"
    # fulfillments/create
    NO_ORDER_ID = "no_order_id"
    NO_TRACKING = "no_tracking"
    NOT_EXPRESS = "not_express"
    NO_CUSTOMER = "no_customer"
    ALREADY_MERGED = "already_merged"
    MERGED = "merged"
    # anything else
    UNKNOWN_TOPIC = "unknown_topic"


@dataclass
class HandlerResult:
    outcome: Outcome
    order_id: Optional[str] = None
    merged_order_ids: List[str] = field(default_factory=list)
    held_unit_ids: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "order_id": self.order_id,
            "merged_order_ids": list(self.merged_order_ids),
            "held_unit_ids": list(self.held_unit_ids),
            "warnings": list(self.warnings),
        }
