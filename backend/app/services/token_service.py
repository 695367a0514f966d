# Overview: OAuth2 token lifecycle for external order API accounts.

"""
Token Invariants (authoritative)

- Only this module writes Account.access_token / refresh_token / token_expires_at.
- A missing token_expires_at is treated as expired.
- New tokens and their expiry (now + expires_in) are committed together, or not at all.
- Failures are never retried here. Stored tokens are left untouched and the
  caller decides what happens to the account:
    AuthError              -> grant rejected; account needs a human to re-authorize
    TransientNetworkError  -> try again next cycle
"""

from __future__ import annotations

import base64
from datetime import datetime, timedelta
from typing import Callable
from urllib.parse import urlencode

import httpx
from flask import current_app

from ..models import Account
from ..models.accounts import SYNC_STATUS_CONNECTED
from app.time_utils import utcnow
from .concurrency import run_in_transaction
from .order_api import (
    AuthError,
    TransientNetworkError,
    decode_json,
    describe_error_body,
    send_request,
)

# Token endpoint responses that mean the grant itself was refused
_AUTH_REJECTED_STATUSES = {400, 401, 403}


def _basic_auth_header(account: Account) -> str:
    if not account.client_id or not account.client_secret:
        raise AuthError(f"account {account.id} has no client credentials configured")
    raw = f"{account.client_id}:{account.client_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def is_authenticated(account: Account, now: datetime | None = None) -> bool:
    """Active account holding an access token that has not expired."""
    return bool(
        account.is_active
        and account.access_token
        and not account.token_expired(now)
    )


class TokenManager:
    def __init__(
        self,
        client: httpx.Client,
        *,
        token_url: str,
        authorize_url: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.token_url = token_url
        self.authorize_url = authorize_url
        self.clock = clock

    @classmethod
    def from_config(cls, client: httpx.Client, config) -> "TokenManager":
        return cls(
            client,
            token_url=config["ORDER_API_TOKEN_URL"],
            authorize_url=config.get("ORDER_API_AUTHORIZE_URL"),
        )

    def ensure_valid_token(self, account: Account) -> str:
        """
        Return a usable access token, refreshing first when the stored one has expired.
        """
        if account.access_token and not account.token_expired(self.clock()):
            return account.access_token

        current_app.logger.info(
            "Access token for account %s (%s) expired, refreshing", account.id, account.name
        )
        return self.refresh(account)

    def refresh(self, account: Account) -> str:
        if not account.refresh_token:
            raise AuthError(f"account {account.id} has no refresh token")

        tokens = self._request_tokens(
            account,
            {"grant_type": "refresh_token", "refresh_token": account.refresh_token},
        )
        self._store_tokens(account, tokens)
        current_app.logger.info(
            "Refreshed access token for account %s, expires at %s",
            account.id,
            account.token_expires_at,
        )
        return account.access_token

    def exchange_code(self, account: Account, code: str, redirect_uri: str) -> str:
        """
        Authorization-code grant: the only path that (re)connects an account.
        """
        tokens = self._request_tokens(
            account,
            {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri},
        )
        self._store_tokens(account, tokens, connect=True)
        current_app.logger.info("Account %s (%s) connected", account.id, account.name)
        return account.access_token

    def build_authorize_url(self, account: Account, redirect_uri: str, state: str) -> str:
        if not self.authorize_url:
            raise ValueError("authorize URL not configured")
        if not account.client_id or not account.client_secret:
            raise AuthError(f"account {account.id} has no client credentials configured")
        query = urlencode({
            "response_type": "code",
            "client_id": account.client_id,
            "redirect_uri": redirect_uri,
            "state": state,
        })
        return f"{self.authorize_url}?{query}"

    def _request_tokens(self, account: Account, form: dict) -> dict:
        response = send_request(
            self.client,
            "POST",
            self.token_url,
            data=form,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Authorization": _basic_auth_header(account),
            },
        )

        if response.status_code in _AUTH_REJECTED_STATUSES:
            raise AuthError(
                f"token grant rejected for account {account.id}: {describe_error_body(response)}"
            )
        if response.status_code >= 400:
            raise TransientNetworkError(
                f"token endpoint failed for account {account.id}: {describe_error_body(response)}"
            )

        body = decode_json(response)
        if not isinstance(body, dict) or not body.get("access_token"):
            raise TransientNetworkError(f"token response for account {account.id} has no access_token")
        try:
            expires_in = int(body.get("expires_in"))
        except (TypeError, ValueError) as exc:
            raise TransientNetworkError(
                f"token response for account {account.id} has invalid expires_in"
            ) from exc
        body["expires_in"] = expires_in
        return body

    def _store_tokens(self, account: Account, tokens: dict, *, connect: bool = False) -> None:
        expires_at = self.clock() + timedelta(seconds=tokens["expires_in"])

        def _apply():
            account.access_token = tokens["access_token"]
            # Providers that do not rotate refresh tokens omit it; keep the current one
            account.refresh_token = tokens.get("refresh_token") or account.refresh_token
            account.token_expires_at = expires_at
            if connect:
                account.is_active = True
                account.sync_status = SYNC_STATUS_CONNECTED
                account.last_sync_error = None

        run_in_transaction(_apply)
