# Overview: Reconciles fetched orders into the local order store and applies stock deductions exactly once.

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable

from flask import current_app

from ..extensions import db
from ..models import Account, Order
from ..models.inventory import MOVEMENT_EXIT
from ..models.orders import CUSTOMER_NAME_MAX_LENGTH, ORDER_NUMBER_MAX_LENGTH, STATUS_MAX_LENGTH
from app.time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .order_api import MalformedOrder, OrderLine, ParsedOrder, parse_order
from .status_service import CanonicalStatus, MANUAL_PROCESSING_STATUSES, classify
from .stock_service import append_movement, find_product_by_sku
"""
Reconciliation Invariants (authoritative)

Identity:
- (external_order_id, account_id) identifies an order. Re-sightings update the same row.

Upsert:
- Snapshot fields (status, customer_name, total_cents, items_json, updated_at) follow the latest fetch.
- is_processed / processed_at are never written by the snapshot upsert.

Deduction (at most once per order):
- Gate: canonical status == auto-deduct status AND is_processed is False.
- One EXIT movement per line whose SKU resolves to a Product.
- Lines without a SKU and SKUs without a Product are skipped and counted, never fatal.
- The upsert, every movement and the is_processed flip commit as ONE unit.
  If anything fails the whole unit rolls back and the order stays unprocessed,
  so the next sighting retries it whole.
- Once is_processed is True the gate is closed forever; re-fetches are no-ops
  for stock. Later cancellation does NOT reverse a deduction.

Isolation:
- A failure on one order is logged and counted; the rest of the batch continues.
"""


class OrderNotFoundError(Exception):
    """Raised when an order does not exist or belongs to another user."""
    pass


class OrderAlreadyProcessedError(Exception):
    """Raised when a deduction is requested for an order already deducted."""
    pass


@dataclass
class DeductionResult:
    movements_created: int = 0
    skipped_no_sku: int = 0
    skipped_missing_product: int = 0


@dataclass
class ReconcileOutcome:
    order_id: int
    created: bool
    status: str
    deduction: DeductionResult | None = None


@dataclass
class ReconcileSummary:
    upserted: int = 0
    created: int = 0
    auto_processed: int = 0
    movements_created: int = 0
    skipped_no_sku: int = 0
    skipped_missing_product: int = 0
    malformed: int = 0
    failed: int = 0
    outcomes: list = field(default_factory=list)

    def absorb(self, outcome: ReconcileOutcome) -> None:
        self.outcomes.append(outcome)
        self.upserted += 1
        if outcome.created:
            self.created += 1
        if outcome.deduction is not None:
            self.auto_processed += 1
            self.movements_created += outcome.deduction.movements_created
            self.skipped_no_sku += outcome.deduction.skipped_no_sku
            self.skipped_missing_product += outcome.deduction.skipped_missing_product

    def to_dict(self) -> dict:
        return {
            "upserted": self.upserted,
            "created": self.created,
            "auto_processed": self.auto_processed,
            "movements_created": self.movements_created,
            "skipped_no_sku": self.skipped_no_sku,
            "skipped_missing_product": self.skipped_missing_product,
            "malformed": self.malformed,
            "failed": self.failed,
        }


def _serialize_lines(lines: Iterable[OrderLine]) -> str:
    return json.dumps([line.to_dict() for line in lines])


def _lines_from_snapshot(order: Order) -> list[OrderLine]:
    return [
        OrderLine(sku=item.get("sku"), quantity=int(item.get("quantity") or 1), description=item.get("description"))
        for item in order.items
    ]


def _deduct_lines(order: Order, lines: Iterable[OrderLine], *, reason: str, processed_at: datetime) -> DeductionResult:
    """
    Append EXIT movements for the order's lines and close the processed gate.

    Runs inside the caller's transaction; never commits.
    """
    result = DeductionResult()
    for line in lines:
        if not line.sku:
            result.skipped_no_sku += 1
            current_app.logger.warning(
                "Order #%s (account %s): line without SKU skipped", order.order_number, order.account_id
            )
            continue

        product = find_product_by_sku(line.sku)
        if product is None:
            result.skipped_missing_product += 1
            current_app.logger.warning(
                "Order #%s (account %s): no product for SKU %r, line skipped",
                order.order_number, order.account_id, line.sku,
            )
            continue

        append_movement(
            movement_type=MOVEMENT_EXIT,
            product_id=product.id,
            quantity=line.quantity,
            user_id=order.user_id,
            reason=reason,
            order_id=order.id,
        )
        result.movements_created += 1
        current_app.logger.info(
            "Order #%s: deducted %sx %s (SKU %s)", order.order_number, line.quantity, product.name, line.sku
        )

    order.is_processed = True
    order.processed_at = processed_at
    return result


class ReconciliationEngine:
    def __init__(self, *, auto_deduct_status: str = "Verified", clock: Callable[[], datetime] = utcnow):
        self.auto_deduct_status = auto_deduct_status
        self.clock = clock

    @classmethod
    def from_config(cls, config) -> "ReconciliationEngine":
        return cls(auto_deduct_status=config["AUTO_DEDUCT_STATUS"])

    def _find_order(self, external_order_id: str, account_id: int) -> Order | None:
        query = db.session.query(Order).filter_by(
            external_order_id=external_order_id,
            account_id=account_id,
        )
        return lock_for_update(query).first()

    def reconcile(self, account: Account, parsed: ParsedOrder, status: CanonicalStatus) -> ReconcileOutcome:
        """Upsert one classified order and deduct stock if it just became eligible."""
        account_id = account.id
        user_id = account.user_id

        def _unit() -> ReconcileOutcome:
            now = self.clock()
            order = self._find_order(parsed.external_id, account_id)
            created = order is None
            if created:
                order = Order(
                    external_order_id=parsed.external_id,
                    account_id=account_id,
                    user_id=user_id,
                    order_number=parsed.number[:ORDER_NUMBER_MAX_LENGTH],
                    external_created_at=parsed.created_at,
                    is_processed=False,
                )
                db.session.add(order)

            order.status = status.label[:STATUS_MAX_LENGTH]
            order.customer_name = parsed.customer_name[:CUSTOMER_NAME_MAX_LENGTH] if parsed.customer_name else None
            order.total_cents = parsed.total_cents
            order.items_json = _serialize_lines(parsed.lines)
            order.updated_at = now
            db.session.flush()

            deduction = None
            if status == self.auto_deduct_status and not order.is_processed:
                current_app.logger.info(
                    "Automatic deduction for order #%s (account %s), status %s",
                    order.order_number, account_id, status.label,
                )
                deduction = _deduct_lines(
                    order,
                    parsed.lines,
                    reason=f"Automatic deduction - Order #{order.order_number} ({status.label})",
                    processed_at=now,
                )

            return ReconcileOutcome(
                order_id=order.id,
                created=created,
                status=status.label,
                deduction=deduction,
            )

        return run_in_transaction(_unit)

    def reconcile_batch(self, account: Account, raw_orders: Iterable) -> ReconcileSummary:
        """
        Parse, classify and reconcile raw orders in fetch order.

        Each order is its own transaction; failures are contained to that order.
        """
        account_id = account.id
        summary = ReconcileSummary()

        for raw in raw_orders:
            parsed = parse_order(raw)
            if isinstance(parsed, MalformedOrder):
                summary.malformed += 1
                current_app.logger.warning(
                    "Skipping malformed order %s for account %s: %s",
                    parsed.external_id or "<no id>", account_id, parsed.reason,
                )
                continue

            status = classify(parsed.status_id, parsed.status_text)
            try:
                outcome = self.reconcile(account, parsed, status)
            except Exception:
                summary.failed += 1
                current_app.logger.exception(
                    "Failed to reconcile order #%s (external id %s) for account %s",
                    parsed.number, parsed.external_id, account_id,
                )
                continue

            summary.absorb(outcome)

        return summary


# =============================================================================
# MANUAL PROCESSING AND QUERIES
# =============================================================================

def process_order(*, order_id: int, user_id: int, clock: Callable[[], datetime] = utcnow) -> DeductionResult:
    """
    Deduct stock for a pending order on operator request.

    Shares the automatic path's atomic unit and its processed gate, so an
    order can never be deducted twice whichever path reaches it first.
    """
    def _unit() -> DeductionResult:
        query = db.session.query(Order).filter_by(id=order_id, user_id=user_id)
        order = lock_for_update(query).first()
        if order is None:
            raise OrderNotFoundError(f"order {order_id} not found")
        if order.is_processed:
            raise OrderAlreadyProcessedError(f"order #{order.order_number} was already processed")
        return _deduct_lines(
            order,
            _lines_from_snapshot(order),
            reason=f"Order #{order.order_number}",
            processed_at=clock(),
        )

    return run_in_transaction(_unit)


def list_pending_orders(*, account_id: int, user_id: int) -> list[Order]:
    """Unprocessed orders in a status an operator may deduct, newest first."""
    return (
        db.session.query(Order)
        .filter(
            Order.account_id == account_id,
            Order.user_id == user_id,
            Order.status.in_(MANUAL_PROCESSING_STATUSES),
            Order.is_processed.is_(False),
        )
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def list_recent_orders(*, account_id: int, user_id: int, days: int = 90, now: datetime | None = None) -> list[Order]:
    cutoff = (now or utcnow()) - timedelta(days=days)
    return (
        db.session.query(Order)
        .filter(
            Order.account_id == account_id,
            Order.user_id == user_id,
            Order.created_at >= cutoff,
        )
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
