# Overview: Paginated, rate-limited retrieval of recently changed orders for one account.

"""
Fetch Semantics (authoritative)

- Pages are requested sequentially, 1-based, with a fixed delay before every
  page after the first (remote rate limit).
- A page shorter than page_size is the last page.
- max_pages bounds cycle duration and API load. Stopping at the ceiling with a
  full last page is reported as partial=True, never as a failure.
- Any page failure (timeout, connection error, non-2xx, malformed body) stops
  pagination. Pages already fetched are returned with partial=True and the
  error is logged. fetch_recent itself never raises for page failures.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx
from flask import current_app

from ..models import Account
from app.time_utils import format_api_date, utcnow
from .order_api import (
    OrderSyncError,
    TransientNetworkError,
    decode_json,
    describe_error_body,
    extract_order_page,
    send_request,
)


@dataclass
class FetchResult:
    orders: list = field(default_factory=list)
    partial: bool = False
    pages: int = 0
    error: Optional[str] = None


class OrderFetcher:
    def __init__(
        self,
        client: httpx.Client,
        *,
        base_url: str,
        page_size: int = 100,
        max_pages: int = 5,
        page_delay: float = 0.3,
        lookback: timedelta = timedelta(hours=24),
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        if page_size <= 0 or max_pages <= 0:
            raise ValueError("page_size and max_pages must be positive")
        self.client = client
        self.orders_url = base_url.rstrip("/") + "/pedidos/vendas"
        self.page_size = page_size
        self.max_pages = max_pages
        self.page_delay = page_delay
        self.lookback = lookback
        self.sleep = sleep
        self.clock = clock

    @classmethod
    def from_config(cls, client: httpx.Client, config, **overrides) -> "OrderFetcher":
        kwargs = dict(
            base_url=config["ORDER_API_BASE_URL"],
            page_size=config["SYNC_PAGE_SIZE"],
            max_pages=config["SYNC_MAX_PAGES"],
            page_delay=config["SYNC_PAGE_DELAY_SECONDS"],
            lookback=timedelta(hours=config["SYNC_LOOKBACK_HOURS"]),
        )
        kwargs.update(overrides)
        return cls(client, **kwargs)

    def default_since(self) -> datetime:
        return self.clock() - self.lookback

    def _fetch_page(self, token: str, page: int, since: datetime) -> list:
        response = send_request(
            self.client,
            "GET",
            self.orders_url,
            params={
                "limite": self.page_size,
                "pagina": page,
                "dataInicial": format_api_date(since),
            },
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        )
        if response.status_code >= 400:
            raise TransientNetworkError(f"order listing page {page} failed: {describe_error_body(response)}")
        return extract_order_page(decode_json(response))

    def fetch_recent(self, account: Account, token: str, since: datetime | None = None) -> FetchResult:
        since = since or self.default_since()
        result = FetchResult()

        page = 1
        while page <= self.max_pages:
            if page > 1:
                self.sleep(self.page_delay)
            try:
                orders = self._fetch_page(token, page, since)
            except OrderSyncError as exc:
                current_app.logger.error(
                    "Order fetch aborted for account %s (%s) at page %s: %s",
                    account.id, account.name, page, exc,
                )
                result.partial = True
                result.error = str(exc)
                return result

            result.orders.extend(orders)
            result.pages = page

            if len(orders) < self.page_size:
                return result
            page += 1

        # Ceiling reached with a full last page: more orders may exist
        result.partial = True
        current_app.logger.warning(
            "Order fetch for account %s (%s) stopped at page ceiling %s; result is partial",
            account.id, account.name, self.max_pages,
        )
        return result
