"""Tests for SqlInventory against a throwaway SQLite database (aiosqlite).

The same transaction code runs on PostgreSQL in production; SQLite ignores
FOR UPDATE but keeps the all-or-nothing behaviour under test.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from conftest import ALICE, BOB, make_settings
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from trade_engine.domain.enums import TradeStatus
from trade_engine.domain.models import ItemStack, TransferLeg
from trade_engine.infrastructure.database.inventory import SqlInventory
from trade_engine.infrastructure.database.orm_models import Base
from trade_engine.infrastructure.database.repositories import InventoryRepository
from trade_engine.services.session_store import TradeSessionStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


@pytest.fixture
async def session_factory(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'inventory.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def sql_inventory(session_factory: async_sessionmaker[AsyncSession]) -> SqlInventory:
    inventory = SqlInventory(session_factory)
    await inventory.grant(ALICE, "diamond_sword", 1)
    await inventory.grant(ALICE, "health_potion", 5)
    await inventory.grant(BOB, "gold_coin", 100)
    await inventory.grant(BOB, "bound_amulet", 1, tradable=False)
    return inventory


async def _holdings(inventory: SqlInventory, user_id: str) -> dict[str, int]:
    return {stack.item_id: stack.quantity for stack in await inventory.list_items(user_id)}


class TestQueries:
    @pytest.mark.asyncio
    async def test_tradable_items_exclude_bound(self, sql_inventory: SqlInventory) -> None:
        assert await sql_inventory.list_tradable_items(BOB) == [ItemStack("gold_coin", 100)]
        assert await _holdings(sql_inventory, BOB) == {"bound_amulet": 1, "gold_coin": 100}

    @pytest.mark.asyncio
    async def test_grant_accumulates(self, sql_inventory: SqlInventory) -> None:
        await sql_inventory.grant(ALICE, "health_potion", 2)
        assert (await _holdings(sql_inventory, ALICE))["health_potion"] == 7

    @pytest.mark.asyncio
    async def test_unknown_user_has_nothing(self, sql_inventory: SqlInventory) -> None:
        assert await sql_inventory.list_tradable_items("nobody") == []


class TestTransferAtomic:
    @pytest.mark.asyncio
    async def test_swap_applied(self, sql_inventory: SqlInventory) -> None:
        result = await sql_inventory.transfer_atomic(
            [
                TransferLeg(ALICE, BOB, "diamond_sword", 1),
                TransferLeg(BOB, ALICE, "gold_coin", 40),
            ]
        )

        assert result.ok
        assert await _holdings(sql_inventory, ALICE) == {"gold_coin": 40, "health_potion": 5}
        assert await _holdings(sql_inventory, BOB) == {
            "bound_amulet": 1,
            "diamond_sword": 1,
            "gold_coin": 60,
        }

    @pytest.mark.asyncio
    async def test_shortfall_rolls_back_earlier_legs(self, sql_inventory: SqlInventory) -> None:
        result = await sql_inventory.transfer_atomic(
            [
                TransferLeg(ALICE, BOB, "diamond_sword", 1),
                TransferLeg(BOB, ALICE, "gold_coin", 500),
            ]
        )

        assert not result.ok
        assert "gold_coin" in result.reason
        assert await _holdings(sql_inventory, ALICE) == {"diamond_sword": 1, "health_potion": 5}
        assert (await _holdings(sql_inventory, BOB))["gold_coin"] == 100

    @pytest.mark.asyncio
    async def test_untradable_source_rejected(self, sql_inventory: SqlInventory) -> None:
        result = await sql_inventory.transfer_atomic([TransferLeg(BOB, ALICE, "bound_amulet", 1)])
        assert not result.ok
        assert "bound_amulet" not in await _holdings(sql_inventory, ALICE)

    @pytest.mark.asyncio
    async def test_received_items_stay_tradable(self, sql_inventory: SqlInventory) -> None:
        await sql_inventory.transfer_atomic([TransferLeg(ALICE, BOB, "health_potion", 2)])
        assert ItemStack("health_potion", 2) in await sql_inventory.list_tradable_items(BOB)


class TestRepository:
    @pytest.mark.asyncio
    async def test_remove_to_zero_deletes_row(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        async with session_factory() as session, session.begin():
            repo = InventoryRepository(session)
            row = await repo.add(ALICE, "arrow", 3)
            await repo.remove(row, 3)
            assert await repo.get_for_update(ALICE, "arrow") is None


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_store_settles_through_sql_ledger(self, sql_inventory: SqlInventory) -> None:
        store = TradeSessionStore(sql_inventory, sql_inventory, settings=make_settings())
        invitation = await store.create_invitation(ALICE, BOB)
        await store.accept_invitation(invitation.id, BOB)
        await store.propose_items(
            invitation.id, ALICE, [("health_potion", 2), ("health_potion", 1)]
        )
        await store.propose_items(invitation.id, BOB, [("gold_coin", 25)])
        await store.lock(invitation.id, BOB)
        await store.lock(invitation.id, ALICE)
        await store.accept_final(invitation.id, ALICE)
        final = await store.accept_final(invitation.id, BOB)

        assert final.status is TradeStatus.COMMITTED
        assert await _holdings(sql_inventory, ALICE) == {
            "diamond_sword": 1,
            "gold_coin": 25,
            "health_potion": 2,
        }
        assert (await _holdings(sql_inventory, BOB))["health_potion"] == 3
        await store.shutdown()
