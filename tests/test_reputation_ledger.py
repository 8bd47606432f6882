"""
Reputation ledger tests against SQLite: clamping, idempotency per source,
history statistics and concurrent penalty application.
"""
import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.errors import ConflictError, ConsistencyError, ValidationError
from app.models.database import atomic
from app.models.event_log import EventLogEntry, UserTrust
from app.schemas.analytics import PageRequest
from app.schemas.events import EntityType
from app.schemas.reputation import ReputationAdjustment
from app.services import event_store, reputation_ledger
from app.services.reputation_ledger import SOURCE_DAMAGE_REPORT
from builders import store_raw


async def _penalize(session, user_id: str, amount: float, source_id: str):
    async with atomic(session):
        return await reputation_ledger.apply_penalty(
            session, user_id, amount, f"Damage penalty {source_id}", SOURCE_DAMAGE_REPORT, source_id,
        )


async def _ledger_count(session) -> int:
    result = await session.execute(
        select(func.count()).select_from(EventLogEntry)
        .where(EventLogEntry.entity_type == EntityType.REPUTATION_ENTRY.value)
    )
    return result.scalar_one()


class TestApplyChange:

    async def test_unknown_user_starts_at_default(self, db):
        assert await reputation_ledger.current_score(db, "new-user") == 100.0

    async def test_penalty_recorded(self, db):
        entry = await _penalize(db, "u1", 15.0, "D-1")
        assert (entry.previous_score, entry.change, entry.new_score) == (100.0, -15.0, 85.0)
        assert await reputation_ledger.current_score(db, "u1") == 85.0

    async def test_clamped_at_zero(self, db):
        await _penalize(db, "u1", 80.0, "D-1")
        entry = await _penalize(db, "u1", 50.0, "D-2")
        assert entry.new_score == 0.0
        assert await reputation_ledger.current_score(db, "u1") == 0.0

    async def test_zero_penalty_writes_nothing(self, db):
        assert await _penalize(db, "u1", 0.0, "D-1") is None
        assert await _ledger_count(db) == 0

    async def test_same_source_applied_once(self, db):
        await _penalize(db, "u1", 10.0, "D-1")
        with pytest.raises(ConflictError):
            await _penalize(db, "u1", 10.0, "D-1")
        assert await reputation_ledger.current_score(db, "u1") == 90.0
        assert await _ledger_count(db) == 1

    async def test_version_advances(self, db):
        await _penalize(db, "u1", 1.0, "D-1")
        await _penalize(db, "u1", 1.0, "D-2")
        trust = (await db.execute(select(UserTrust).where(UserTrust.user_id == "u1"))).scalar_one()
        assert trust.version == 2

    async def test_failed_ledger_write_leaves_score_untouched(self, db, monkeypatch):
        await _penalize(db, "u1", 10.0, "D-1")

        async def failing_append(session, *args, **kwargs):
            raise OperationalError("INSERT INTO event_log", {}, Exception("disk I/O error"))

        monkeypatch.setattr(event_store, "append", failing_append)
        with pytest.raises(ConsistencyError):
            await _penalize(db, "u1", 25.0, "D-2")
        monkeypatch.undo()

        trust = (await db.execute(select(UserTrust).where(UserTrust.user_id == "u1"))).scalar_one()
        assert (trust.trust_score, trust.version) == (90.0, 1)
        assert await _ledger_count(db) == 1


class TestConcurrentPenalties:

    async def test_no_lost_updates(self, db, session_factory):
        db.add(UserTrust(user_id="u1", trust_score=100.0, version=0))
        await db.commit()

        amounts = [3.0, 5.0, 7.0, 2.0, 4.0, 6.0, 1.0, 8.0]

        async def worker(i: int, amount: float):
            async with session_factory() as session:
                await _penalize(session, "u1", amount, f"D-{i}")

        await asyncio.gather(*(worker(i, a) for i, a in enumerate(amounts)))

        async with session_factory() as check:
            assert await reputation_ledger.current_score(check, "u1") == pytest.approx(100.0 - sum(amounts))
            assert await _ledger_count(check) == len(amounts)
            history = await reputation_ledger.reputation_history(check, "u1", PageRequest(limit=100))

        # every entry continues from the previous one's score
        chain = sorted(history.entries, key=lambda e: e.previous_score, reverse=True)
        for earlier, later in zip(chain, chain[1:]):
            assert earlier.new_score == pytest.approx(later.previous_score)

    async def test_clamps_under_concurrency(self, db, session_factory):
        db.add(UserTrust(user_id="u1", trust_score=10.0, version=0))
        await db.commit()

        async def worker(i: int):
            async with session_factory() as session:
                await _penalize(session, "u1", 4.0, f"D-{i}")

        await asyncio.gather(*(worker(i) for i in range(5)))

        async with session_factory() as check:
            assert await reputation_ledger.current_score(check, "u1") == 0.0
            assert await _ledger_count(check) == 5


class TestAdjustAndHistory:

    async def test_manual_adjustment_either_sign(self, db):
        await reputation_ledger.adjust_reputation(
            db, "u1", ReputationAdjustment(change=-20, reason="late twice"), actor="mgr-1",
        )
        entry = await reputation_ledger.adjust_reputation(
            db, "u1", ReputationAdjustment(change=5, reason="clean streak"), actor="mgr-1",
        )
        assert entry.new_score == 85.0

    async def test_adjustment_with_source_id_is_idempotent(self, db):
        adjustment = ReputationAdjustment(change=5, reason="bonus", source_id="ticket-7")
        await reputation_ledger.adjust_reputation(db, "u1", adjustment, actor="mgr-1")
        with pytest.raises(ConflictError):
            await reputation_ledger.adjust_reputation(db, "u1", adjustment, actor="mgr-1")

    async def test_zero_adjustment_rejected(self, db):
        with pytest.raises(ValidationError):
            await reputation_ledger.adjust_reputation(
                db, "u1", ReputationAdjustment(change=0, reason="noop"), actor="mgr-1",
            )

    async def test_history_statistics_and_paging(self, db):
        for i, change in enumerate([-10, 5, -3]):
            await reputation_ledger.adjust_reputation(
                db, "u1", ReputationAdjustment(change=change, reason=f"r{i}"), actor="mgr-1",
            )
        await _penalize(db, "someone-else", 9.0, "D-x")

        history = await reputation_ledger.reputation_history(db, "u1", PageRequest(page=1, limit=2))
        assert len(history.entries) == 2
        assert history.pagination.total == 3
        assert history.pagination.has_next
        stats = history.statistics
        assert stats.current_trust_score == 92.0
        assert stats.total_entries == 3
        assert stats.total_change == -8
        assert (stats.positive_changes, stats.negative_changes) == (1, 2)
        assert stats.average_change == pytest.approx(-8 / 3)

    async def test_history_for_unknown_user(self, db):
        history = await reputation_ledger.reputation_history(db, "nobody", PageRequest())
        assert history.entries == []
        assert history.statistics.current_trust_score == 100.0
        assert history.statistics.average_change == 0.0

    async def test_history_reads_only_that_users_rows(self, db, monkeypatch):
        await _penalize(db, "u1", 4.0, "D-1")
        await _penalize(db, "u2", 6.0, "D-2")
        await store_raw(db, EntityType.REPUTATION_ENTRY, "E-bad", {"user_id": "u2"})

        real_decode = event_store.decode_tolerant
        seen = []

        def recording_decode(rows):
            rows = list(rows)
            seen.extend(row.payload["user_id"] for row in rows)
            return real_decode(rows)

        monkeypatch.setattr(event_store, "decode_tolerant", recording_decode)
        history = await reputation_ledger.reputation_history(db, "u1", PageRequest())

        assert seen == ["u1"]
        assert [e.change for e in history.entries] == [-4.0]
