from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


MOVEMENT_ENTRY = "ENTRY"
MOVEMENT_EXIT = "EXIT"
MOVEMENT_TYPES = (MOVEMENT_ENTRY, MOVEMENT_EXIT)


class Product(db.Model):
    """
    Product master data.

    Owned by the catalog side of the system. The order sync core only reads
    products, resolving order lines by SKU.

    SKU DESIGN DECISION:
    Product.sku is globally unique and is the only key external order lines
    carry, so SKU lookup never needs a user filter. Stock, however, is
    user-scoped: it is folded from movements per (product_id, user_id).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    Current stock is never stored; it is the signed sum of quantities over
    all movements for a (product_id, user_id) pair: ENTRY adds, EXIT subtracts.
    Rows are never updated or deleted.
    """
    __tablename__ = "stock_movements"

    id = db.Column(db.Integer, primary_key=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    user_id = db.Column(db.Integer, nullable=False, index=True)

    # Set when the movement was produced by an order deduction
    order_id = db.Column(db.Integer, db.ForeignKey("external_orders.id"), nullable=True, index=True)

    sync_status = db.Column(db.String(16), nullable=False, default="synced")

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    product = db.relationship("Product", backref=db.backref("movements", lazy=True))

    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint("type IN ('ENTRY', 'EXIT')", name="ck_stock_movements_type"),
        db.Index("ix_stock_movements_product_user", "product_id", "user_id"),
        {"sqlite_autoincrement": True},
    )

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.type == MOVEMENT_ENTRY else -self.quantity

    def __repr__(self) -> str:
        return f"<StockMovement id={self.id} type={self.type} product_id={self.product_id} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "reason": self.reason,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "sync_status": self.sync_status,
            "created_at": to_utc_z(self.created_at),
        }
