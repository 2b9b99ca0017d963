# tests/test_credits.py
import asyncio

import pytest

from tests.conftest import seed_user


@pytest.mark.asyncio
async def test_debit_decrements_balance(store, ledger):
    user, _ = await seed_user(store, credits=5, products=0)

    result = await ledger.debit(user["id"], 2, ref_id="item-1")

    assert result.success
    assert result.new_balance == 3
    assert await ledger.get_balance(user["id"]) == 3


@pytest.mark.asyncio
async def test_debit_refused_when_balance_too_low(store, ledger):
    user, _ = await seed_user(store, credits=1, products=0)

    result = await ledger.debit(user["id"], 2, ref_id="item-1")

    assert not result.success
    assert result.error == "Insufficient credits"
    assert await ledger.get_balance(user["id"]) == 1


@pytest.mark.asyncio
async def test_debit_with_same_reference_charges_once(store, ledger):
    user, _ = await seed_user(store, credits=5, products=0)

    first = await ledger.debit(user["id"], 1, ref_id="item-1")
    second = await ledger.debit(user["id"], 1, ref_id="item-1")

    assert first.success and second.success
    assert await ledger.get_balance(user["id"]) == 4


@pytest.mark.asyncio
async def test_refused_debit_can_be_retried_after_top_up(store, ledger):
    user, _ = await seed_user(store, credits=0, products=0)

    assert not (await ledger.debit(user["id"], 1, ref_id="item-1")).success
    await ledger.grant(user["id"], 3)
    assert (await ledger.debit(user["id"], 1, ref_id="item-1")).success
    assert await ledger.get_balance(user["id"]) == 2


@pytest.mark.asyncio
async def test_concurrent_debits_never_overdraw(store, ledger):
    user, _ = await seed_user(store, credits=3, products=0)

    results = await asyncio.gather(
        *(ledger.debit(user["id"], 1, ref_id=f"item-{i}") for i in range(10))
    )

    assert sum(r.success for r in results) == 3
    assert await ledger.get_balance(user["id"]) == 0


@pytest.mark.asyncio
async def test_grant_requires_positive_units(store, ledger):
    user, _ = await seed_user(store, credits=0, products=0)
    with pytest.raises(ValueError):
        await ledger.grant(user["id"], 0)
