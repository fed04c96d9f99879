from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from decimal import Decimal

import pytest

from phone_credits.db.memory import InMemoryDBManager
from phone_credits.errors import InsufficientCreditsError, InvalidInputError, NotFoundError
from phone_credits.logging.ledger_logger import LedgerLogger
from phone_credits.models.transaction import TransactionType
from phone_credits.services.credit_service import CreditService


@pytest.mark.asyncio
async def test_add_and_deduct_credits(tmp_path):
    db = InMemoryDBManager()
    ledger = LedgerLogger(db=db, file_path=tmp_path / "ledger.log")
    service = CreditService(db=db, ledger=ledger)

    user_id = "user-1"
    await service.ensure_user(user_id, email="a@example.com")

    tx_add, created = await service.add_credits(user_id, Decimal("1.00"))
    assert created
    assert tx_add.type == TransactionType.PURCHASE
    assert await service.get_balance(user_id) == Decimal("1.00")

    tx_deduct = await service.deduct_credits(user_id, Decimal("0.25"), "Phone verification - Google")
    assert tx_deduct.type == TransactionType.DEDUCTION
    assert tx_deduct.amount == Decimal("0.25")
    assert await service.get_balance(user_id) == Decimal("0.75")

    history = list(await service.get_credit_history(user_id))
    assert [t.type for t in history] == [TransactionType.DEDUCTION, TransactionType.PURCHASE]


@pytest.mark.asyncio
async def test_deduct_more_than_balance_changes_nothing(stack):
    await stack.user_with_balance("user-1", "0.10")

    with pytest.raises(InsufficientCreditsError, match="Insufficient credits"):
        await stack.credits.deduct_credits("user-1", Decimal("0.25"), "too much")

    assert await stack.credits.get_balance("user-1") == Decimal("0.10")
    history = list(await stack.credits.get_credit_history("user-1"))
    assert [t.type for t in history] == [TransactionType.PURCHASE]


@pytest.mark.asyncio
async def test_concurrent_deductions_never_overspend(stack):
    """Balance 0.50 and three 0.25 spends: exactly two may succeed."""
    await stack.user_with_balance("user-1", "0.50")

    results = await asyncio.gather(
        *(stack.credits.deduct_credits("user-1", Decimal("0.25"), "spend") for _ in range(3)),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientCreditsError)
    assert await stack.credits.get_balance("user-1") == Decimal("0.00")
    deductions = [
        t
        for t in await stack.credits.get_credit_history("user-1")
        if t.type == TransactionType.DEDUCTION
    ]
    assert len(deductions) == 2


@pytest.mark.asyncio
async def test_add_credits_is_idempotent_per_payment_ref(stack):
    await stack.credits.ensure_user("user-1")

    first, created = await stack.credits.add_credits(
        "user-1", Decimal("10"), external_ref="pi_123"
    )
    again, created_again = await stack.credits.add_credits(
        "user-1", Decimal("10"), external_ref="pi_123"
    )

    assert created and not created_again
    assert again.id == first.id
    assert await stack.credits.get_balance("user-1") == Decimal("10.00")


@pytest.mark.asyncio
async def test_payment_ref_cannot_credit_another_user(stack):
    await stack.credits.ensure_user("user-1")
    await stack.credits.ensure_user("user-2")
    await stack.credits.add_credits("user-1", Decimal("5"), external_ref="pi_abc")

    with pytest.raises(InvalidInputError):
        await stack.credits.add_credits("user-2", Decimal("5"), external_ref="pi_abc")
    assert await stack.credits.get_balance("user-2") == Decimal("0.00")


@pytest.mark.asyncio
async def test_amounts_are_rounded_to_cents(stack):
    await stack.credits.ensure_user("user-1")
    tx, _ = await stack.credits.add_credits("user-1", Decimal("0.105"))
    assert tx.amount == Decimal("0.11")
    assert await stack.credits.get_balance("user-1") == Decimal("0.11")


@pytest.mark.asyncio
async def test_non_positive_amounts_are_rejected(stack):
    await stack.credits.ensure_user("user-1")
    with pytest.raises(InvalidInputError):
        await stack.credits.add_credits("user-1", Decimal("0"))
    with pytest.raises(InvalidInputError):
        await stack.credits.deduct_credits("user-1", Decimal("-1"), "negative")
    with pytest.raises(InvalidInputError):
        await stack.credits.refund_credits("user-1", Decimal("0"), "nothing")


@pytest.mark.asyncio
async def test_ensure_user_refreshes_profile_but_keeps_balance(stack):
    await stack.user_with_balance("user-1", "2.00")

    user = await stack.credits.ensure_user(
        "user-1", email="new@example.com", first_name="Ada"
    )

    assert user.email == "new@example.com"
    assert user.first_name == "Ada"
    assert user.credit_balance == Decimal("2.00")


@pytest.mark.asyncio
async def test_unknown_user_is_not_found(stack):
    with pytest.raises(NotFoundError):
        await stack.credits.get_balance("nobody")
    with pytest.raises(NotFoundError):
        await stack.credits.add_credits("nobody", Decimal("1"))


@pytest.mark.asyncio
async def test_ledger_is_mirrored_to_file(stack):
    await stack.user_with_balance("user-1", "1.00")
    await stack.credits.deduct_credits("user-1", Decimal("0.25"), "spend")

    lines = stack.ledger_path.read_text(encoding="utf-8").splitlines()
    entries = [json.loads(line) for line in lines]
    assert [e["message"] for e in entries] == ["Credits added", "Credits deducted"]
    assert entries[1]["details"]["new_balance"] == "0.75"
    assert stack.ledger_messages("user-1") == ["Credits added", "Credits deducted"]


@pytest.mark.asyncio
async def test_rolled_back_unit_writes_no_ledger_line(stack):
    await stack.user_with_balance("user-1", "1.00")

    with pytest.raises(RuntimeError):
        async with stack.db.transaction():
            await stack.credits.deduct_credits("user-1", Decimal("0.25"), "spend")
            raise RuntimeError("number assignment failed")

    lines = stack.ledger_path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["message"] for line in lines] == ["Credits added"]
    assert stack.ledger_messages("user-1") == ["Credits added"]
    assert await stack.credits.get_balance("user-1") == Decimal("1.00")


class PerWriteStore(InMemoryDBManager):
    """
    Each write stands alone, as with Mongo when multi-document transactions
    are off. `stale_ref_reads` makes payment-ref lookups miss, the way a
    request racing a concurrent replay would see them.
    """

    def __init__(self) -> None:
        super().__init__()
        self.stale_ref_reads = 0

    @asynccontextmanager
    async def transaction(self):
        yield

    async def get_transaction_by_external_ref(self, external_payment_ref):
        if self.stale_ref_reads:
            self.stale_ref_reads -= 1
            return None
        return await super().get_transaction_by_external_ref(external_payment_ref)


@pytest.mark.asyncio
async def test_racing_payment_replay_credits_once_without_transactions(tmp_path):
    db = PerWriteStore()
    service = CreditService(db=db, ledger=LedgerLogger(db=db, file_path=tmp_path / "ledger.log"))
    await service.ensure_user("user-1")

    first, _ = await service.add_credits("user-1", Decimal("5"), external_ref="pi_race")
    db.stale_ref_reads = 1
    again, created = await service.add_credits("user-1", Decimal("5"), external_ref="pi_race")

    assert not created
    assert again.id == first.id
    assert await service.get_balance("user-1") == Decimal("5.00")
    purchases = [
        t
        for t in await service.get_credit_history("user-1")
        if t.type == TransactionType.PURCHASE
    ]
    assert len(purchases) == 1
