"""Tests for the SQLite memory repository."""

import sqlite3
from datetime import timedelta

import pytest

from agentmemory.interfaces import (
    ContextFilter,
    InteractionType,
    Memory,
    MemoryContext,
    MemoryMetadata,
)
from agentmemory.services.repository import SQLiteMemoryRepository
from agentmemory.utils import utcnow


def make_memory(owner_id="agent-1", heat=0.5, days_old=0, **context) -> Memory:
    created = utcnow() - timedelta(days=days_old)
    return Memory(
        owner_id=owner_id,
        content="Discussed caching strategies",
        embedding=[0.6, 0.8],
        context=MemoryContext(**context),
        metadata=MemoryMetadata(heat_score=heat, tags=["infra"]),
        created_at=created,
        last_accessed=created,
    )


class TestInsertAndGet:

    async def test_round_trip(self, repository):
        memory = make_memory(
            interaction_type=InteractionType.COMMENT,
            forum_id="forum-1",
            forum_name="Infra",
            post_id="post-1",
            post_title="Caching",
            comment_id="c-1",
        )
        memory.metadata.expires_at = utcnow() + timedelta(days=1)

        await repository.insert(memory)
        loaded = await repository.get(memory.id)

        assert loaded.id == memory.id
        assert loaded.content == memory.content
        assert loaded.embedding == [0.6, 0.8]
        assert loaded.context.interaction_type is InteractionType.COMMENT
        assert loaded.context.forum_name == "Infra"
        assert loaded.context.comment_id == "c-1"
        assert loaded.metadata.tags == ["infra"]
        assert loaded.metadata.expires_at == memory.metadata.expires_at
        assert loaded.created_at == memory.created_at
        assert loaded.created_at.tzinfo is not None

    async def test_get_missing(self, repository):
        assert await repository.get("missing") is None

    async def test_heat_outside_range_rejected(self, repository):
        with pytest.raises(sqlite3.IntegrityError):
            await repository.insert(make_memory(heat=1.5))

    async def test_get_many_preserves_order_and_skips_inactive(self, repository):
        a, b, c = make_memory(), make_memory(), make_memory()
        for memory in (a, b, c):
            await repository.insert(memory)
        await repository.deactivate([b.id], utcnow())

        loaded = await repository.get_many([c.id, b.id, a.id, "missing"])

        assert [m.id for m in loaded] == [c.id, a.id]

    async def test_persists_across_connections(self, tmp_path):
        path = tmp_path / "nested" / "memories.db"
        first = SQLiteMemoryRepository(path)
        memory = await first.insert(make_memory())
        await first.close()

        second = SQLiteMemoryRepository(path)
        try:
            assert (await second.get(memory.id)).content == memory.content
        finally:
            await second.close()


class TestUpdateAccess:

    async def test_grows_heat_and_counts(self, repository):
        memory = await repository.insert(make_memory(heat=0.5))
        now = utcnow()

        updated, = await repository.update_access([memory.id], now, 1.1)

        assert updated.metadata.heat_score == pytest.approx(0.55)
        assert updated.access_count == 1
        assert updated.last_accessed == now

    async def test_heat_capped_at_one(self, repository):
        memory = await repository.insert(make_memory(heat=0.95))

        updated, = await repository.update_access([memory.id], utcnow(), 1.1)

        assert updated.metadata.heat_score == 1.0

    async def test_duplicate_ids_count_once(self, repository):
        memory = await repository.insert(make_memory())

        updated = await repository.update_access([memory.id, memory.id], utcnow(), 1.1)

        assert len(updated) == 1
        assert updated[0].access_count == 1

    async def test_inactive_untouched(self, repository):
        memory = await repository.insert(make_memory())
        await repository.deactivate([memory.id], utcnow())

        assert await repository.update_access([memory.id], utcnow(), 1.1) == []


class TestSearch:

    async def test_owner_scope_and_heat_order(self, repository):
        cold = await repository.insert(make_memory(heat=0.2))
        hot = await repository.insert(make_memory(heat=0.9))
        await repository.insert(make_memory(owner_id="agent-2", heat=1.0))

        results = await repository.search("agent-1", sort_by="heat")

        assert [m.id for m in results] == [hot.id, cold.id]

    async def test_recency_order(self, repository):
        old = await repository.insert(make_memory(days_old=3))
        new = await repository.insert(make_memory(days_old=1))

        results = await repository.search("agent-1", sort_by="recency")

        assert [m.id for m in results] == [new.id, old.id]

    async def test_context_filter(self, repository):
        match = await repository.insert(make_memory(
            interaction_type=InteractionType.POST, forum_id="f1", post_id="p1"
        ))
        await repository.insert(make_memory(
            interaction_type=InteractionType.COMMENT, forum_id="f1", post_id="p1"
        ))
        await repository.insert(make_memory(
            interaction_type=InteractionType.POST, forum_id="f2", post_id="p1"
        ))

        results = await repository.search("agent-1", context_filter=ContextFilter(
            forum_id="f1", post_id="p1", interaction_type=InteractionType.POST
        ))

        assert [m.id for m in results] == [match.id]

    async def test_limit(self, repository):
        for _ in range(5):
            await repository.insert(make_memory())

        assert len(await repository.search("agent-1", limit=3)) == 3


class TestCleanupSelection:

    async def test_selects_expired_and_cold_aged(self, repository):
        now = utcnow()
        cutoff = now - timedelta(days=90)
        cold_old = await repository.insert(make_memory(heat=0.05, days_old=100))
        expired = make_memory(heat=0.9)
        expired.metadata.expires_at = now - timedelta(seconds=1)
        await repository.insert(expired)
        await repository.insert(make_memory(heat=0.5, days_old=100))
        await repository.insert(make_memory(heat=0.05, days_old=10))

        selected = await repository.select_for_cleanup(now, cutoff, 0.1, 100)

        assert sorted(selected) == sorted([cold_old.id, expired.id])

    async def test_deactivate_reports_transitions_once(self, repository):
        memory = await repository.insert(make_memory())

        assert await repository.deactivate([memory.id], utcnow()) == [memory.id]
        assert await repository.deactivate([memory.id], utcnow()) == []

    async def test_deactivate_owner(self, repository):
        for _ in range(2):
            await repository.insert(make_memory())
        other = await repository.insert(make_memory(owner_id="agent-2"))

        assert len(await repository.deactivate_owner("agent-1", utcnow())) == 2
        assert await repository.get(other.id) is not None


class TestStats:

    async def test_stats_cover_inactive_rows(self, repository):
        a = await repository.insert(make_memory(heat=0.4, interaction_type=InteractionType.POST))
        await repository.insert(make_memory(heat=0.8, interaction_type=InteractionType.POST))
        await repository.insert(make_memory(heat=0.6, interaction_type=InteractionType.VOTE))
        await repository.deactivate([a.id], utcnow())

        stats = await repository.stats("agent-1")

        assert stats.total_memories == 3
        assert stats.active_memories == 2
        assert stats.average_heat_score == pytest.approx(0.6)
        assert stats.top_contexts == [("post", 1), ("vote", 1)]
