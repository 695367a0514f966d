from __future__ import annotations

import json

from ..extensions import db
from app.time_utils import to_utc_z

# External text is truncated to these lengths before it is stored
ORDER_NUMBER_MAX_LENGTH = 64
STATUS_MAX_LENGTH = 255
CUSTOMER_NAME_MAX_LENGTH = 255


class Order(db.Model):
    """
    Local mirror of one external sales order.

    IDENTITY:
    (external_order_id, account_id) is unique and is the upsert key. Every
    re-sighting of the same external order updates this one row.

    PROCESSED FLAG:
    - is_processed moves False -> True exactly once, never back.
    - is_processed / processed_at are write-once; snapshot upserts must not touch them.
    - The flip happens in the same DB transaction as the EXIT movements it causes.
    """
    __tablename__ = "external_orders"
    __table_args__ = (
        db.UniqueConstraint("external_order_id", "account_id", name="uq_external_orders_external_account"),
        db.Index("ix_external_orders_account_status", "account_id", "status"),
        db.Index("ix_external_orders_account_created", "account_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    external_order_id = db.Column(db.String(64), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    order_number = db.Column(db.String(ORDER_NUMBER_MAX_LENGTH), nullable=False)
    status = db.Column(db.String(STATUS_MAX_LENGTH), nullable=False)
    customer_name = db.Column(db.String(CUSTOMER_NAME_MAX_LENGTH), nullable=True)

    # Authoritative storage in cents
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Line-item snapshot as last fetched, JSON array of {"sku", "quantity"}
    items_json = db.Column(db.Text, nullable=False, default="[]")

    is_processed = db.Column(db.Boolean, nullable=False, default=False, index=True)
    processed_at = db.Column(db.DateTime, nullable=True)

    external_created_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    account = db.relationship("Account", backref=db.backref("orders", lazy=True))
    movements = db.relationship("StockMovement", backref="order", lazy=True)

    @property
    def items(self) -> list[dict]:
        return json.loads(self.items_json or "[]")

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} number={self.order_number!r} account_id={self.account_id} "
            f"status={self.status!r} processed={self.is_processed}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_order_id": self.external_order_id,
            "account_id": self.account_id,
            "user_id": self.user_id,
            "order_number": self.order_number,
            "status": self.status,
            "customer_name": self.customer_name,
            "total_cents": self.total_cents,
            "items": self.items,
            "is_processed": self.is_processed,
            "processed_at": to_utc_z(self.processed_at),
            "external_created_at": to_utc_z(self.external_created_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
