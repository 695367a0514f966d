# Overview: Append-only stock ledger; current stock is always folded from movements.

from __future__ import annotations

from sqlalchemy import case, func

from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_ENTRY, MOVEMENT_TYPES
"""
Stock Ledger Invariants (authoritative)

- Stock is ledger-derived from StockMovement rows; never stored as a mutable quantity field.
- Current stock for (product_id, user_id) = SUM(ENTRY.quantity) - SUM(EXIT.quantity).
- Movements are append-only: no updates, no deletes.
- quantity is always a positive integer; direction is carried by type.
- append_movement never commits. The caller owns the transaction so a
  movement lands together with the domain change that caused it.
"""


def append_movement(
    *,
    movement_type: str,
    product_id: int,
    quantity: int,
    user_id: int,
    reason: str | None = None,
    order_id: int | None = None,
    sync_status: str = "synced",
) -> StockMovement:
    if movement_type not in MOVEMENT_TYPES:
        raise ValueError(f"invalid movement type {movement_type!r}")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError("quantity must be a positive integer")

    movement = StockMovement(
        type=movement_type,
        product_id=product_id,
        quantity=quantity,
        reason=reason,
        user_id=user_id,
        order_id=order_id,
        sync_status=sync_status,
    )
    db.session.add(movement)
    db.session.flush()  # ensures movement.id is assigned without committing
    return movement


def get_current_stock(product_id: int, user_id: int) -> int:
    signed = case(
        (StockMovement.type == MOVEMENT_ENTRY, StockMovement.quantity),
        else_=-StockMovement.quantity,
    )
    q = db.session.query(func.coalesce(func.sum(signed), 0)).filter(
        StockMovement.product_id == product_id,
        StockMovement.user_id == user_id,
    )
    return int(q.scalar() or 0)


def fold_stock(movements) -> int:
    """Fold an in-memory sequence of movements into a stock figure."""
    return sum(m.signed_quantity for m in movements)


def find_product_by_sku(sku: str) -> Product | None:
    return db.session.query(Product).filter_by(sku=sku).first()


def list_movements(*, product_id: int, user_id: int, limit: int = 200) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id, user_id=user_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def get_stock_summary(*, product_id: int, user_id: int) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ValueError("product not found")
    return {
        "product_id": product.id,
        "sku": product.sku,
        "name": product.name,
        "user_id": user_id,
        "current_stock": get_current_stock(product_id, user_id),
    }
