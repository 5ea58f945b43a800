"""Tests for the in-process DuplicateIndex."""

from __future__ import annotations

import asyncio

import pytest

from trade_engine.domain.models import pair_key
from trade_engine.services.pair_index import DuplicateIndex


class TestDuplicateIndex:
    @pytest.mark.asyncio
    async def test_claim_then_conflict(self) -> None:
        index = DuplicateIndex()
        key = pair_key("alice", "bob")
        assert await index.claim(key, "t-1") is None
        assert await index.claim(pair_key("bob", "alice"), "t-2") == "t-1"
        assert await index.lookup(key) == "t-1"

    @pytest.mark.asyncio
    async def test_reclaim_by_owner_is_a_noop(self) -> None:
        index = DuplicateIndex()
        key = pair_key("alice", "bob")
        await index.claim(key, "t-1")
        assert await index.claim(key, "t-1") is None
        assert len(index) == 1

    @pytest.mark.asyncio
    async def test_release_only_by_owner(self) -> None:
        index = DuplicateIndex()
        key = pair_key("alice", "bob")
        await index.claim(key, "t-1")
        assert await index.release(key, "t-2") is False
        assert await index.release(key, "t-1") is True
        assert await index.lookup(key) is None
        assert await index.claim(key, "t-3") is None

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self) -> None:
        index = DuplicateIndex()
        key = pair_key("alice", "bob")
        results = await asyncio.gather(*(index.claim(key, f"t-{i}") for i in range(20)))
        assert results.count(None) == 1
