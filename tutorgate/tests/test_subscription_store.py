from datetime import datetime, timedelta, timezone

import pytest

from tutorgate.core.database import build_engine, make_session_factory
from tutorgate.core.errors import StoreFailureError
from tutorgate.features.subscriptions.store import SubscriptionStore
from tutorgate.models.subscription import BillingCycle, PlanTier, SubscriptionStatus


def _insert(store, user_id="user-1", plan=PlanTier.PREMIUM, start=None, generation=1):
    start = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
    return store.insert(
        user_id=user_id,
        plan=plan,
        billing_cycle=BillingCycle.MONTHLY,
        period_start=start,
        period_end=start + timedelta(days=31),
        generation=generation,
    )


def test_insert_round_trips_record(store):
    sub = _insert(store)
    assert sub.id is not None
    assert sub.user_id == "user-1"
    assert sub.plan == PlanTier.PREMIUM
    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.current_period_start.tzinfo is not None
    assert store.get_by_id(sub.id) == sub


def test_get_latest_returns_newest_record(store, clock):
    _insert(store, plan=PlanTier.PREMIUM)
    clock.advance(days=1)
    newer = _insert(store, plan=PlanTier.PRO, generation=2)
    _insert(store, user_id="someone-else")

    assert store.get_latest("user-1").id == newer.id
    assert store.get_latest("missing") is None


def test_apply_update_checks_version(store):
    sub = _insert(store)

    assert store.apply_update(sub.id, sub.version, {"status": SubscriptionStatus.CANCELLED})
    assert not store.apply_update(sub.id, sub.version, {"status": SubscriptionStatus.ACTIVE})

    current = store.get_by_id(sub.id)
    assert current.status == SubscriptionStatus.CANCELLED
    assert current.version == sub.version + 1


def test_apply_update_rejects_unknown_fields(store):
    sub = _insert(store)
    with pytest.raises(ValueError):
        store.apply_update(sub.id, sub.version, {"user_id": "someone-else"})
    assert store.get_by_id(sub.id) == sub


def test_apply_update_on_missing_record(store):
    assert not store.apply_update(9999, 1, {"status": SubscriptionStatus.CANCELLED})


def test_sweep_queries(store, clock):
    due = _insert(store, user_id="due")
    store.apply_update(due.id, due.version, {
        "scheduled_plan": PlanTier.FREE,
        "scheduled_billing_cycle": BillingCycle.MONTHLY,
        "scheduled_change_date": due.current_period_end,
    })
    lapsed = _insert(store, user_id="lapsed")
    store.apply_update(lapsed.id, lapsed.version, {"status": SubscriptionStatus.CANCELLED, "cancel_at_period_end": True})
    _insert(store, user_id="current")

    before = clock() + timedelta(days=1)
    after = clock() + timedelta(days=40)
    assert store.list_due_scheduled_changes(before) == []
    assert store.list_lapsed_cancellations(before) == []
    assert [s.user_id for s in store.list_due_scheduled_changes(after)] == ["due"]
    assert [s.user_id for s in store.list_lapsed_cancellations(after)] == ["lapsed"]


def test_database_errors_surface_as_store_failure(clock):
    broken = build_engine("sqlite:////nonexistent-dir/tutorgate/db.sqlite")
    store = SubscriptionStore(make_session_factory(broken), now_fn=clock)

    with pytest.raises(StoreFailureError) as exc_info:
        store.get_latest("user-1")
    assert exc_info.value.status_code == 503
    assert exc_info.value.code == "store_unavailable"


def test_failed_write_leaves_record_intact(store, monkeypatch):
    sub = _insert(store)

    def broken_now():
        raise RuntimeError("clock failure")

    monkeypatch.setattr(store, "now_fn", broken_now)
    with pytest.raises(RuntimeError):
        store.apply_update(sub.id, sub.version, {"plan": PlanTier.PRO})
    assert store.get_by_id(sub.id) == sub


def test_insert_refuses_duplicate_generation(store):
    first = _insert(store)
    assert _insert(store, plan=PlanTier.PRO) is None
    assert store.get_latest("user-1") == first

    second = _insert(store, plan=PlanTier.PRO, generation=2)
    assert second.generation == 2
    assert store.get_latest("user-1") == second
