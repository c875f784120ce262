"""
Tests: snapshot cache freshness rules and the portfolio overview read model.
"""

import gc
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import redis
from redis.exceptions import LockNotOwnedError

from rfp_platform.models import db
from rfp_platform.models.snapshot import SnapshotCacheEntry
from rfp_platform.models.supplier import SupplierContact, SupplierResponse
from rfp_platform.services import snapshot_cache
from rfp_platform.services.portfolio import (
    build_portfolio_snapshot,
    compose_portfolio_snapshot,
    readiness_band,
)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class _Loader:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return {"n": self.calls}


# ═════════════════════════════════════════════════════════════════════════════
# Snapshot cache
# ═════════════════════════════════════════════════════════════════════════════


class TestSnapshotCache:
    def test_first_read_generates(self):
        loader = _Loader()
        payload, meta = snapshot_cache.get_or_compute(1, "kind", loader, 60, now=NOW)
        assert payload == {"n": 1}
        assert meta == {"generated_at": NOW.isoformat(), "age_seconds": 0.0, "from_cache": False}
        assert SnapshotCacheEntry.query.count() == 1

    def test_fresh_entry_served_from_cache(self):
        loader = _Loader()
        snapshot_cache.get_or_compute(1, "kind", loader, 60, now=NOW)
        payload, meta = snapshot_cache.get_or_compute(1, "kind", loader, 60, now=NOW + timedelta(seconds=30))
        assert payload == {"n": 1}
        assert meta["from_cache"] is True
        assert meta["age_seconds"] == 30.0
        assert loader.calls == 1

    def test_threshold_is_inclusive(self):
        loader = _Loader()
        snapshot_cache.get_or_compute(1, "kind", loader, 60, now=NOW)
        _, meta = snapshot_cache.get_or_compute(1, "kind", loader, 60, now=NOW + timedelta(seconds=60))
        assert meta["from_cache"] is True

    def test_stale_entry_regenerated_in_place(self):
        loader = _Loader()
        snapshot_cache.get_or_compute(1, "kind", loader, 60, now=NOW)
        payload, meta = snapshot_cache.get_or_compute(1, "kind", loader, 60, now=NOW + timedelta(seconds=61))
        assert payload == {"n": 2}
        assert meta["from_cache"] is False
        assert SnapshotCacheEntry.query.count() == 1

    def test_force_bypasses_freshness(self):
        loader = _Loader()
        snapshot_cache.get_or_compute(1, "kind", loader, 3600, now=NOW)
        payload, _ = snapshot_cache.get_or_compute(1, "kind", loader, 3600, now=NOW, force=True)
        assert payload == {"n": 2}

    def test_keys_are_independent(self):
        loader = _Loader()
        snapshot_cache.get_or_compute(1, "a", loader, 60, now=NOW)
        snapshot_cache.get_or_compute(1, "b", loader, 60, now=NOW)
        snapshot_cache.get_or_compute(2, "a", loader, 60, now=NOW)
        assert loader.calls == 3

    def test_invalidate(self):
        loader = _Loader()
        snapshot_cache.get_or_compute(1, "kind", loader, 3600, now=NOW)
        snapshot_cache.invalidate(1, "kind")
        payload, meta = snapshot_cache.get_or_compute(1, "kind", loader, 3600, now=NOW)
        assert payload == {"n": 2}
        assert meta["from_cache"] is False

    def test_one_lock_per_key(self):
        assert snapshot_cache._key_lock("1", "kind") is snapshot_cache._key_lock("1", "kind")
        assert snapshot_cache._key_lock("1", "kind") is not snapshot_cache._key_lock("2", "kind")

    def test_unheld_locks_are_evicted(self):
        lock = snapshot_cache._key_lock("9", "kind")
        assert ("9", "kind") in snapshot_cache._locks
        del lock
        gc.collect()
        assert ("9", "kind") not in snapshot_cache._locks


class TestSharedRegenerationLock:
    """Regeneration lock taken in Redis when REDIS_URL points at a Redis server."""

    @pytest.fixture()
    def redis_client(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "REDIS_URL", "redis://cache:6379/0")
        client = MagicMock()
        client.lock.return_value.acquire.return_value = True
        with patch.object(snapshot_cache, "_redis_for", return_value=client) as factory:
            yield client
        factory.assert_called_with("redis://cache:6379/0")

    def test_regeneration_holds_redis_lock(self, redis_client):
        loader = _Loader()
        payload, _ = snapshot_cache.get_or_compute(7, "portfolio", loader, 60, now=NOW)
        assert payload == {"n": 1}
        name = redis_client.lock.call_args.args[0]
        assert name == "snapshot:portfolio:7"
        assert redis_client.lock.call_args.kwargs["timeout"] == snapshot_cache.LOCK_TIMEOUT_SECONDS
        redis_client.lock.return_value.release.assert_called_once()

    def test_fresh_entry_skips_the_lock(self, redis_client):
        loader = _Loader()
        snapshot_cache.get_or_compute(7, "portfolio", loader, 60, now=NOW)
        snapshot_cache.get_or_compute(7, "portfolio", loader, 60, now=NOW + timedelta(seconds=30))
        assert redis_client.lock.call_count == 1
        assert loader.calls == 1

    def test_wait_timeout_falls_back_to_process_lock(self, redis_client):
        redis_client.lock.return_value.acquire.return_value = False
        loader = _Loader()
        payload, meta = snapshot_cache.get_or_compute(7, "portfolio", loader, 60, now=NOW)
        assert payload == {"n": 1}
        assert meta["from_cache"] is False
        redis_client.lock.return_value.release.assert_not_called()

    def test_redis_down_falls_back_to_process_lock(self, redis_client):
        redis_client.lock.return_value.acquire.side_effect = redis.ConnectionError("refused")
        loader = _Loader()
        assert snapshot_cache.get_or_compute(7, "portfolio", loader, 60, now=NOW)[0] == {"n": 1}

    def test_expired_lock_on_release_is_tolerated(self, redis_client):
        redis_client.lock.return_value.release.side_effect = LockNotOwnedError("expired")
        loader = _Loader()
        assert snapshot_cache.get_or_compute(7, "portfolio", loader, 60, now=NOW)[0] == {"n": 1}

    def test_memory_url_uses_process_lock(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "REDIS_URL", "memory://")
        with patch.object(snapshot_cache, "_redis_for") as factory:
            snapshot_cache.get_or_compute(7, "portfolio", _Loader(), 60, now=NOW)
        factory.assert_not_called()


# ═════════════════════════════════════════════════════════════════════════════
# Portfolio
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize("score,band", [
    (100, "excellent"), (90, "excellent"), (89, "good"), (75, "good"),
    (74, "moderate"), (60, "moderate"), (59, "low"), (0, "low"),
])
def test_readiness_band(score, band):
    assert readiness_band(score) == band


@pytest.fixture()
def portfolio(make_rfp, other_buyer):
    breached = make_rfp(title="Breached", stage="INTAKE", entered_days_ago=5, budget=100000.0)
    upcoming = make_rfp(
        title="Upcoming", stage="DRAFTING", budget=50000.0,
        submission_end=NOW + timedelta(days=10), award_date=NOW + timedelta(days=45),
    )
    make_rfp(title="Old", stage="DEBRIEF", is_archived=True, budget=25000.0,
             submission_end=NOW + timedelta(days=5))
    make_rfp(title="Foreign", company_id=other_buyer.company_id, budget=1.0)

    for rfp, score in ((breached, 95), (upcoming, 70)):
        contact = SupplierContact(rfp_id=rfp.id, name="V", email=f"v{rfp.id}@vendor.test", invitation_status="SENT")
        db.session.add(contact)
        db.session.flush()
        db.session.add(SupplierResponse(supplier_contact_id=contact.id, rfp_id=rfp.id,
                                        status="SUBMITTED", readiness_score=score))
    db.session.commit()
    return breached, upcoming


class TestPortfolioSnapshot:
    def test_kpis(self, portfolio, buyer):
        snap = build_portfolio_snapshot(buyer.company_id, now=NOW)
        assert snap["kpis"] == {
            "total_rfps": 3,
            "active_rfps": 2,
            "archived_rfps": 1,
            "average_readiness": 82.5,
            "sla_breach_count": 1,
        }

    def test_stage_counts_cover_every_stage(self, portfolio, buyer):
        stages = {s["stage"]: s["count"] for s in build_portfolio_snapshot(buyer.company_id, now=NOW)["stages"]}
        assert len(stages) == 9
        assert stages["INTAKE"] == 1
        assert stages["DRAFTING"] == 1
        assert stages["DEBRIEF"] == 1
        assert stages["QUALIFICATION"] == 0

    def test_sla_summary_lists_breached(self, portfolio, buyer):
        breached, _ = portfolio
        sla = build_portfolio_snapshot(buyer.company_id, now=NOW)["sla_summary"]
        assert sla["breached"] == 1
        assert sla["ok"] == 1
        assert [r["rfp_id"] for r in sla["breached_rfps"]] == [breached.id]

    def test_readiness_distribution(self, portfolio, buyer):
        dist = build_portfolio_snapshot(buyer.company_id, now=NOW)["readiness_distribution"]
        assert dist["excellent_count"] == 1
        assert dist["moderate_count"] == 1
        assert dist["low_count"] == 0

    def test_upcoming_milestones_skip_archived_and_far_dates(self, portfolio, buyer):
        _, upcoming = portfolio
        items = build_portfolio_snapshot(buyer.company_id, now=NOW)["upcoming_milestones"]
        assert [(m["rfp_id"], m["milestone"], m["days_until"]) for m in items] == [
            (upcoming.id, "submission_end", 10),
        ]

    def test_spend_summary(self, portfolio, buyer):
        spend = build_portfolio_snapshot(buyer.company_id, now=NOW)["spend_summary"]
        assert spend == {"total_budget_all_rfps": 175000.0, "in_flight_budget": 150000.0, "in_flight_count": 2}

    def test_compose_serves_cached_until_refresh(self, portfolio, buyer, make_rfp):
        first, meta = compose_portfolio_snapshot(buyer.company_id, now=NOW)
        assert meta["from_cache"] is False
        make_rfp(title="Late addition")

        cached, meta = compose_portfolio_snapshot(buyer.company_id, now=NOW + timedelta(minutes=5))
        assert meta["from_cache"] is True
        assert cached["kpis"]["total_rfps"] == first["kpis"]["total_rfps"] == 3

        fresh, meta = compose_portfolio_snapshot(buyer.company_id, now=NOW + timedelta(minutes=5), force=True)
        assert meta["from_cache"] is False
        assert fresh["kpis"]["total_rfps"] == 4

    def test_compose_regenerates_after_max_age(self, portfolio, buyer):
        compose_portfolio_snapshot(buyer.company_id, max_age_minutes=10, now=NOW)
        _, meta = compose_portfolio_snapshot(buyer.company_id, max_age_minutes=10, now=NOW + timedelta(minutes=11))
        assert meta["from_cache"] is False
