# Overview: Maps raw external order status (id/text) onto the canonical status taxonomy.

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class OrderStatus(Enum):
    """
    Closed set of canonical statuses.

    Value is (external status id, label). AWAITING_PROCESSING has no external
    id; it is the fallback when an order carries no usable status at all.
    """
    OPEN = (0, "Open")
    FULFILLED = (1, "Fulfilled")
    CANCELED = (2, "Canceled")
    IN_PROGRESS = (3, "In Progress")
    AGENCY_SALE = (4, "Agency Sale")
    VERIFIED = (5, "Verified")
    AWAITING = (6, "Awaiting")
    NOT_DELIVERED = (7, "Not Delivered")
    DELIVERED = (8, "Delivered")
    DRAFTING = (9, "Drafting")
    CHECKED = (10, "Checked")
    SHIPPED = (11, "Shipped")
    READY_TO_SHIP = (12, "Ready to Ship")
    PENDING = (13, "Pending")
    INVOICED = (14, "Invoiced")
    READY = (15, "Ready")
    PRINTED = (16, "Printed")
    PICKED = (17, "Picked")
    PACKED = (18, "Packed")
    COLLECTED = (19, "Collected")
    IN_TRANSIT = (20, "In Transit")
    RETURNED = (21, "Returned")
    LOST = (22, "Lost")
    DELIVERY_ATTEMPTED = (23, "Delivery Attempted")
    RESCHEDULED = (24, "Rescheduled")
    BLOCKED = (25, "Blocked")
    SUSPENDED = (26, "Suspended")
    PROCESSING = (27, "Processing")
    APPROVED = (28, "Approved")
    REJECTED = (29, "Rejected")
    REVERSED = (30, "Reversed")
    AWAITING_PROCESSING = (None, "Awaiting Processing")

    def __init__(self, code: Optional[int], label: str):
        self.code = code
        self.label = label


_BY_CODE = {status.code: status for status in OrderStatus if status.code is not None}

# Statuses an operator may deduct manually
MANUAL_PROCESSING_STATUSES = (OrderStatus.VERIFIED.label, OrderStatus.CHECKED.label)


@dataclass(frozen=True, eq=False)
class CanonicalStatus:
    """
    Result of classification: either a known OrderStatus or a raw label.

    Compares equal to its label string so callers can write
    `status == "Verified"`; the label is what gets persisted.
    """
    label: str
    known: Optional[OrderStatus] = None

    @property
    def is_raw(self) -> bool:
        return self.known is None

    def __eq__(self, other):
        if isinstance(other, CanonicalStatus):
            return self.label == other.label
        if isinstance(other, str):
            return self.label == other
        return NotImplemented

    def __hash__(self):
        return hash(self.label)

    def __str__(self) -> str:
        return self.label


def classify(status_id: Optional[int], status_text: Optional[str]) -> CanonicalStatus:
    """
    Resolve canonical status. First match wins:

    1. status_id in the lookup table      -> table label
    2. status_text non-blank after trim   -> trimmed text
    3. status_id present but unmapped     -> "Status {id}"
    4. nothing usable                     -> "Awaiting Processing"
    """
    if status_id is not None and status_id in _BY_CODE:
        known = _BY_CODE[status_id]
        return CanonicalStatus(label=known.label, known=known)

    text = status_text.strip() if status_text else ""
    if text:
        return CanonicalStatus(label=text)

    if status_id is not None:
        return CanonicalStatus(label=f"Status {status_id}")

    return CanonicalStatus(
        label=OrderStatus.AWAITING_PROCESSING.label,
        known=OrderStatus.AWAITING_PROCESSING,
    )
