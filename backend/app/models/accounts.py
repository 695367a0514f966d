from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z, utcnow


SYNC_STATUS_CONNECTED = "connected"
SYNC_STATUS_DISCONNECTED = "disconnected"
SYNC_STATUS_ERROR = "error"


class Account(db.Model):
    """
    One OAuth2 connection to the external order-management API.

    OWNERSHIP OF FIELDS:
    - access_token / refresh_token / token_expires_at: written only by token_service
    - sync_status / last_sync_at / last_sync_error: written only by the sync scheduler
      (token_service sets sync_status='connected' after an authorization-code exchange)

    Accounts are never deleted by the sync core. An account whose refresh token
    was revoked stays in sync_status='error' until someone re-authorizes it.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.Index("ix_accounts_user_active", "user_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    client_id = db.Column(db.String(255), nullable=True)
    client_secret = db.Column(db.String(255), nullable=True)

    access_token = db.Column(db.Text, nullable=True)
    refresh_token = db.Column(db.Text, nullable=True)
    token_expires_at = db.Column(db.DateTime, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=False)
    sync_status = db.Column(db.String(16), nullable=False, default=SYNC_STATUS_DISCONNECTED)
    last_sync_at = db.Column(db.DateTime, nullable=True)
    last_sync_error = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def token_expired(self, now=None) -> bool:
        """Missing expiry counts as expired."""
        if self.token_expires_at is None:
            return True
        return self.token_expires_at < (now or utcnow())

    def __repr__(self) -> str:
        return f"<Account id={self.id} name={self.name!r} user_id={self.user_id} status={self.sync_status}>"

    def to_dict(self) -> dict:
        # Credentials and tokens are never serialized
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "has_credentials": bool(self.client_id and self.client_secret),
            "token_expires_at": to_utc_z(self.token_expires_at),
            "is_active": self.is_active,
            "sync_status": self.sync_status,
            "last_sync_at": to_utc_z(self.last_sync_at),
            "last_sync_error": self.last_sync_error,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
