"""
Order tag handling.

The tag set on a Shopify order is the only persisted state this service has.
This module parses/serializes the comma separated tag text and derives a typed
state from it, so illegal tag combinations are caught before a write goes out.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional, Set

from .errors import TagStateError


class Tag(str, Enum):
    HOLD = "HOLD"
    EXPRESS_NOW = "EXPRESS_NOW"
    MERGE_IN_PROGRESS = "MERGE_IN_PROGRESS"
    MERGE_DONE = "MERGE_DONE"


class OrderState(str, Enum):
    IDLE = "idle"
    HELD = "held"
    EXPRESS_PENDING = "express_pending"
    MERGE_IN_PROGRESS = "merge_in_progress"
    MERGE_DONE = "merge_done"


# Pairs that may never sit on the same order.
_EXCLUSIVE = (
    (Tag.MERGE_DONE, Tag.MERGE_IN_PROGRESS),
    (Tag.HOLD, Tag.MERGE_DONE),
)


def _name(tag) -> str:
    return tag.value if isinstance(tag, Tag) else str(tag)


def _split(text: Optional[str]) -> list:
    out = []
    seen = set()
    for raw in str(text or "").split(","):
        t = raw.strip()
        if t and t not in seen:
            seen.add(t)
            out.append(t)
    return out


# ----------------------------
# Codec
# ----------------------------
def parse(text: Optional[str]) -> Set[str]:
    return set(_split(text))


def serialize(tags: Iterable) -> str:
    names = {_name(t).strip() for t in tags}
    names.discard("")
    return ", ".join(sorted(names, key=lambda s: (s.lower(), s)))


def add(text: Optional[str], tags: Iterable) -> str:
    return serialize(parse(text) | {_name(t) for t in tags})


def remove(text: Optional[str], tags: Iterable) -> str:
    return serialize(parse(text) - {_name(t) for t in tags})


def has(text: Optional[str], tag) -> bool:
    return _name(tag) in parse(text)


# ----------------------------
# Typed state
# ----------------------------
def validate(tags: Set[str]) -> None:
    for a, b in _EXCLUSIVE:
        if a.value in tags and b.value in tags:
            raise TagStateError(f"Tags {a.value} and {b.value} cannot be present together (tags={serialize(tags)})")


def derive_state(text: Optional[str]) -> OrderState:
    tags = parse(text)
    validate(tags)
    if Tag.MERGE_DONE.value in tags:
        return OrderState.MERGE_DONE
    if Tag.MERGE_IN_PROGRESS.value in tags:
        return OrderState.MERGE_IN_PROGRESS
    if Tag.HOLD.value in tags:
        return OrderState.HELD
    if Tag.EXPRESS_NOW.value in tags:
        return OrderState.EXPRESS_PENDING
    return OrderState.IDLE


def transition(text: Optional[str], add_tags: Iterable = (), remove_tags: Iterable = ()) -> str:
    """
    Return the tag text after removing then adding the given tags.
    Raises TagStateError if the result breaks an exclusion rule, so callers
    can validate before issuing the write.
    """
    tags = (parse(text) - {_name(t) for t in remove_tags}) | {_name(t) for t in add_tags}
    validate(tags)
    return serialize(tags)
