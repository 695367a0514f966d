# Overview: Pytest coverage for the sync scheduler and end-to-end sync cycles.

"""
Sync Cycle Tests

Each cycle runs against FakeOrderApi through an httpx.MockTransport and the
in-memory test database. Sleeps are recorded instead of slept.
"""

import threading
import time

import httpx
import pytest

from app import create_app
from app.models import Account, Order, StockMovement
from app.services.sync_scheduler import SyncScheduler, start_order_sync

from conftest import raw_order


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def scheduler(app, fake_api, sleeps):
    return SyncScheduler(app, transport=fake_api.transport, sleep=sleeps.append)


def _reload(db_session, account_id):
    db_session.expire_all()
    return db_session.get(Account, account_id)


def _bearer_tokens(fake_api):
    return [r.headers["Authorization"] for r in fake_api.order_requests]


class TestCycle:
    def test_verified_order_is_deducted_end_to_end(self, db_session, account, product_x, fake_api, scheduler):
        fake_api.set_pages({1: [raw_order(1, 1001, status_id=5, items=[("X", 3), ("Y", 1)])]})

        cycle = scheduler.run_cycle()

        assert cycle.auto_processed == 1
        assert cycle.failed_accounts == 0
        movement = db_session.query(StockMovement).one()
        assert (movement.type, movement.product_id, movement.quantity) == ("EXIT", product_x.id, 3)

        stored = _reload(db_session, account.id)
        assert stored.sync_status == "connected"
        assert stored.last_sync_at is not None
        assert stored.last_sync_error is None

    def test_second_cycle_does_not_deduct_again(self, db_session, account, product_x, fake_api, scheduler):
        fake_api.set_pages({1: [raw_order(1, 1001, status_id=5, total=30, items=[("X", 3)])]})
        scheduler.run_cycle()

        fake_api.set_pages({1: [raw_order(1, 1001, status_id=5, total=31, items=[("X", 3)])]})
        cycle = scheduler.run_cycle()

        assert cycle.auto_processed == 0
        assert db_session.query(StockMovement).count() == 1
        db_session.expire_all()
        assert db_session.query(Order).one().total_cents == 3100

    def test_expired_token_refreshed_before_fetch(self, db_session, expired_account, fake_api, scheduler):
        fake_api.set_pages({1: [raw_order(1, 1001, status_id=0)]}, token="fresh-access")

        cycle = scheduler.run_cycle()

        assert len(fake_api.token_requests) == 1
        assert _bearer_tokens(fake_api) == ["Bearer fresh-access"]
        assert cycle.accounts[0].fetched == 1

        stored = _reload(db_session, expired_account.id)
        assert stored.access_token == "fresh-access"
        assert stored.refresh_token == "fresh-refresh"

    def test_page_ceiling_gives_partial_but_reconciles_fetched_orders(self, app, db_session, account, fake_api, scheduler, monkeypatch):
        monkeypatch.setitem(app.config, "SYNC_PAGE_SIZE", 2)
        monkeypatch.setitem(app.config, "SYNC_MAX_PAGES", 2)
        fake_api.set_pages({
            1: [raw_order(1, 1001, status_id=0), raw_order(2, 1002, status_id=0)],
            2: [raw_order(3, 1003, status_id=0), raw_order(4, 1004, status_id=0)],
            3: [raw_order(5, 1005, status_id=0)],
        })

        cycle = scheduler.run_cycle()

        result = cycle.accounts[0]
        assert result.partial is True
        assert result.fetched == 4
        assert len(fake_api.order_requests) == 2
        assert db_session.query(Order).count() == 4

    def test_inactive_and_tokenless_accounts_are_skipped(self, db_session, make_account, fake_api, scheduler):
        make_account(name="live", user_id=1)
        make_account(name="paused", user_id=1, is_active=False)
        make_account(name="half", user_id=1, refresh_token=None)

        cycle = scheduler.run_cycle()

        assert [r.account_name for r in cycle.accounts] == ["live"]
        assert _bearer_tokens(fake_api) == ["Bearer live-access"]

    def test_no_accounts_is_an_empty_cycle(self, db_session, fake_api, scheduler):
        cycle = scheduler.run_cycle()

        assert cycle.accounts == []
        assert fake_api.requests == []

    def test_accounts_run_in_order_with_delay_between(self, app, db_session, account, second_account, scheduler, sleeps, monkeypatch):
        monkeypatch.setitem(app.config, "SYNC_ACCOUNT_DELAY_SECONDS", 1)

        cycle = scheduler.run_cycle()

        assert [r.account_id for r in cycle.accounts] == [account.id, second_account.id]
        assert sleeps == [1]


class TestAccountIsolation:
    def test_rejected_refresh_marks_account_and_others_continue(self, db_session, make_account, fake_api, scheduler):
        revoked = make_account(name="revoked", user_id=1, expires_in=None)
        healthy = make_account(name="healthy", user_id=2)
        fake_api.token_responses.append(httpx.Response(401, json={"error": "invalid_grant"}))
        fake_api.set_pages({1: [raw_order(1, 1001, status_id=0)]}, token="healthy-access")

        cycle = scheduler.run_cycle()

        assert [r.success for r in cycle.accounts] == [False, True]
        assert _reload(db_session, revoked.id).sync_status == "error"
        assert _reload(db_session, revoked.id).last_sync_error
        assert _reload(db_session, healthy.id).sync_status == "connected"
        assert db_session.query(Order).filter_by(account_id=healthy.id).count() == 1

    def test_transient_refresh_failure_keeps_status(self, db_session, make_account, fake_api, scheduler):
        flaky = make_account(name="flaky", user_id=1, expires_in=None)
        fake_api.token_responses.append(httpx.ConnectTimeout("timed out"))

        cycle = scheduler.run_cycle()

        assert cycle.failed_accounts == 1
        stored = _reload(db_session, flaky.id)
        assert stored.sync_status == "connected"
        assert stored.last_sync_error
        assert fake_api.order_requests == []

    def test_fetch_failure_on_one_account_does_not_affect_another(self, db_session, account, second_account, fake_api, scheduler):
        fake_api.set_pages({1: httpx.Response(500, json={"error": {"message": "boom"}})}, token="shop-a-access")
        fake_api.set_pages({1: [raw_order(1, 1001, status_id=0)]}, token="shop-b-access")

        cycle = scheduler.run_cycle()

        first, second = cycle.accounts
        assert first.success is False and first.partial is True
        assert second.success is True
        assert _reload(db_session, account.id).last_sync_error
        assert _reload(db_session, second_account.id).last_sync_error is None
        assert db_session.query(Order).filter_by(account_id=second_account.id).count() == 1

    def test_unexpected_error_is_contained(self, db_session, account, second_account, fake_api, scheduler, monkeypatch):
        from app.services import reconciliation_service

        def explode(self, acct, raw_orders):
            if acct.name == "shop-a":
                raise RuntimeError("unexpected")
            return real_batch(self, acct, raw_orders)

        real_batch = reconciliation_service.ReconciliationEngine.reconcile_batch
        monkeypatch.setattr(reconciliation_service.ReconciliationEngine, "reconcile_batch", explode)

        cycle = scheduler.run_cycle()

        assert [r.success for r in cycle.accounts] == [False, True]
        assert "unexpected" in cycle.accounts[0].error


class TestLifecycle:
    def test_cycle_guard_skips_overlapping_run(self, db_session, account, fake_api, scheduler):
        scheduler._cycle_lock.acquire()
        try:
            assert scheduler.cycle_in_progress is True
            assert scheduler.run_cycle() is None
        finally:
            scheduler._cycle_lock.release()

        assert fake_api.requests == []
        assert scheduler.cycle_in_progress is False

    def test_start_and_stop(self, app, scheduler, monkeypatch):
        monkeypatch.setitem(app.config, "SYNC_INITIAL_DELAY_SECONDS", 3600)

        scheduler.start()
        assert scheduler.running is True
        scheduler.start()

        scheduler.stop(timeout=5)
        assert scheduler.running is False

    def test_worker_runs_first_cycle_then_repeats_on_interval(self, app, scheduler, monkeypatch):
        monkeypatch.setitem(app.config, "SYNC_INITIAL_DELAY_SECONDS", 0.01)
        monkeypatch.setitem(app.config, "SYNC_INTERVAL_SECONDS", 0.01)
        calls = []
        two_cycles = threading.Event()

        def counting_cycle():
            calls.append(time.monotonic())
            if len(calls) >= 2:
                two_cycles.set()

        monkeypatch.setattr(scheduler, "run_cycle", counting_cycle)

        scheduler.start()
        try:
            assert two_cycles.wait(timeout=5)
        finally:
            scheduler.stop(timeout=5)

        assert scheduler.running is False
        assert len(calls) >= 2

    def test_crashing_cycle_does_not_stop_the_worker(self, app, scheduler, monkeypatch):
        monkeypatch.setitem(app.config, "SYNC_INITIAL_DELAY_SECONDS", 0.01)
        monkeypatch.setitem(app.config, "SYNC_INTERVAL_SECONDS", 0.01)
        calls = []
        recovered = threading.Event()

        def failing_then_ok():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("cycle blew up")
            recovered.set()

        monkeypatch.setattr(scheduler, "run_cycle", failing_then_ok)

        scheduler.start()
        try:
            assert recovered.wait(timeout=5)
            assert scheduler.running is True
        finally:
            scheduler.stop(timeout=5)

    def test_app_registers_idle_scheduler(self, app):
        scheduler = app.extensions["order_sync"]

        assert isinstance(scheduler, SyncScheduler)
        assert scheduler.running is False

    def test_enabled_sync_starts_only_from_serving_entry_point(self):
        enabled_app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SYNC_ENABLED': True,
            'SYNC_INITIAL_DELAY_SECONDS': 3600,
        })
        scheduler = enabled_app.extensions["order_sync"]

        # create_app alone (CLI commands, migrations) never spawns the worker
        assert scheduler.running is False

        try:
            assert start_order_sync(enabled_app) is True
            assert scheduler.running is True
        finally:
            scheduler.stop(timeout=5)

    def test_disabled_sync_is_not_started(self, app):
        assert start_order_sync(app) is False
        assert app.extensions["order_sync"].running is False
