# Overview: Background scheduler driving order sync cycles across all active accounts.

"""
Scheduling Invariants (authoritative)

- One worker thread per scheduler. First cycle after SYNC_INITIAL_DELAY_SECONDS,
  then one cycle every SYNC_INTERVAL_SECONDS until stop().
- Cycles never overlap: run_cycle takes a non-blocking lock and returns None
  when a cycle is already in progress, whoever triggered it.
- Accounts are processed strictly sequentially with a fixed delay between them.
  This keeps load under the remote rate limit and gives each account's token
  fields a single writer.
- Failures are absorbed at the account boundary. Nothing raised by a cycle
  reaches the host process.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

import httpx
from flask import Flask, current_app, has_app_context

from ..extensions import db
from ..models import Account
from ..models.accounts import SYNC_STATUS_CONNECTED, SYNC_STATUS_ERROR
from app.time_utils import utcnow
from .concurrency import run_in_transaction
from .order_api import AuthError, TransientNetworkError, build_http_client
from .order_fetch_service import OrderFetcher
from .reconciliation_service import ReconcileSummary, ReconciliationEngine
from .token_service import TokenManager


@dataclass
class AccountSyncResult:
    account_id: int
    account_name: str
    success: bool
    fetched: int = 0
    partial: bool = False
    summary: Optional[ReconcileSummary] = None
    error: Optional[str] = None

    @property
    def auto_processed(self) -> int:
        return self.summary.auto_processed if self.summary else 0


@dataclass
class CycleSummary:
    started_at: datetime
    finished_at: Optional[datetime] = None
    accounts: list = field(default_factory=list)

    @property
    def auto_processed(self) -> int:
        return sum(result.auto_processed for result in self.accounts)

    @property
    def failed_accounts(self) -> int:
        return sum(1 for result in self.accounts if not result.success)


def _active_accounts() -> list[Account]:
    return (
        db.session.query(Account)
        .filter(
            Account.is_active.is_(True),
            Account.access_token.isnot(None),
            Account.refresh_token.isnot(None),
        )
        .order_by(Account.id)
        .all()
    )


def _record_account_state(account: Account, *, status: str | None, error: str | None, synced_at: datetime | None) -> None:
    def _apply():
        if status is not None:
            account.sync_status = status
        account.last_sync_error = error[:255] if error else None
        if synced_at is not None:
            account.last_sync_at = synced_at

    run_in_transaction(_apply)


class SyncScheduler:
    def __init__(
        self,
        app: Flask,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.app = app
        self.transport = transport
        self.sleep = sleep
        self.clock = clock
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="order-sync", daemon=True)
        self._thread.start()
        self.app.logger.info(
            "Order sync scheduler started (interval %ss)", self.app.config["SYNC_INTERVAL_SECONDS"]
        )

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self.app.logger.info("Order sync scheduler stopped")

    def _run_loop(self) -> None:
        delay = self.app.config["SYNC_INITIAL_DELAY_SECONDS"]
        while not self._stop_event.wait(delay):
            try:
                self.run_cycle()
            except Exception:
                self.app.logger.exception("Order sync cycle crashed")
            delay = self.app.config["SYNC_INTERVAL_SECONDS"]

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    def run_cycle(self) -> CycleSummary | None:
        """
        Run one sync cycle over every active account.

        Returns None, without doing any work, when another cycle holds the guard.
        """
        if not self._cycle_lock.acquire(blocking=False):
            self.app.logger.warning("Order sync cycle already in progress; skipping")
            return None
        try:
            if has_app_context():
                return self._run_cycle()
            with self.app.app_context():
                try:
                    return self._run_cycle()
                finally:
                    db.session.remove()
        finally:
            self._cycle_lock.release()

    def _run_cycle(self) -> CycleSummary:
        config = current_app.config
        cycle = CycleSummary(started_at=self.clock())

        accounts = _active_accounts()
        if not accounts:
            current_app.logger.info("Order sync: no active accounts")
            cycle.finished_at = self.clock()
            return cycle

        current_app.logger.info("Order sync: starting cycle for %s account(s)", len(accounts))

        with build_http_client(timeout=config["ORDER_API_TIMEOUT_SECONDS"], transport=self.transport) as client:
            tokens = TokenManager(
                client,
                token_url=config["ORDER_API_TOKEN_URL"],
                authorize_url=config["ORDER_API_AUTHORIZE_URL"],
                clock=self.clock,
            )
            fetcher = OrderFetcher.from_config(client, config, sleep=self.sleep, clock=self.clock)
            engine = ReconciliationEngine(auto_deduct_status=config["AUTO_DEDUCT_STATUS"], clock=self.clock)

            for index, account in enumerate(accounts):
                if index:
                    self.sleep(config["SYNC_ACCOUNT_DELAY_SECONDS"])
                cycle.accounts.append(self.sync_account(account, tokens, fetcher, engine))

        cycle.finished_at = self.clock()
        current_app.logger.info(
            "Order sync: cycle finished, %s order(s) auto-processed, %s account(s) failed",
            cycle.auto_processed, cycle.failed_accounts,
        )
        return cycle

    def sync_account(
        self,
        account: Account,
        tokens: TokenManager,
        fetcher: OrderFetcher,
        engine: ReconciliationEngine,
    ) -> AccountSyncResult:
        """Sync one account. Never raises."""
        account_id, account_name = account.id, account.name
        result = AccountSyncResult(account_id=account_id, account_name=account_name, success=False)

        try:
            try:
                token = tokens.ensure_valid_token(account)
            except AuthError as exc:
                current_app.logger.error(
                    "Order sync: account %s (%s) authorization rejected, needs reconnection: %s",
                    account_id, account_name, exc,
                )
                result.error = str(exc)
                _record_account_state(account, status=SYNC_STATUS_ERROR, error=str(exc), synced_at=None)
                return result
            except TransientNetworkError as exc:
                current_app.logger.error(
                    "Order sync: token refresh for account %s (%s) failed, retrying next cycle: %s",
                    account_id, account_name, exc,
                )
                result.error = str(exc)
                _record_account_state(account, status=None, error=str(exc), synced_at=None)
                return result

            fetch = fetcher.fetch_recent(account, token)
            result.fetched = len(fetch.orders)
            result.partial = fetch.partial

            summary = engine.reconcile_batch(account, fetch.orders)
            result.summary = summary
            result.error = fetch.error
            result.success = fetch.error is None

            _record_account_state(
                account,
                status=SYNC_STATUS_CONNECTED,
                error=fetch.error,
                synced_at=self.clock(),
            )
            current_app.logger.info(
                "Order sync: account %s (%s) fetched %s order(s)%s, %s",
                account_id, account_name, result.fetched,
                " (partial)" if fetch.partial else "",
                summary.to_dict(),
            )
        except Exception as exc:
            db.session.rollback()
            result.success = False
            result.error = str(exc)
            current_app.logger.exception(
                "Order sync: unexpected failure for account %s (%s)", account_id, account_name
            )
        return result


def init_order_sync(app: Flask) -> SyncScheduler:
    """
    Attach an idle scheduler to the app.

    Nothing starts here: create_app also runs for CLI commands and migrations.
    """
    scheduler = SyncScheduler(app)
    app.extensions["order_sync"] = scheduler
    return scheduler


def start_order_sync(app: Flask) -> bool:
    """
    Start the app's scheduler when SYNC_ENABLED is set. Returns whether it runs.

    Call from the serving entry point only. Run exactly one such process per
    database: the cycle guard is in-process and does not span workers.
    """
    if not app.config.get("SYNC_ENABLED"):
        return False
    app.extensions["order_sync"].start()
    return True
