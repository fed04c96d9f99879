from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from phone_credits.errors import (
    InsufficientCreditsError,
    InvalidInputError,
    NotFoundError,
    UpstreamUnavailableError,
)
from phone_credits.models.lifecycle import VerificationStatus
from phone_credits.models.transaction import TransactionType


@pytest.mark.asyncio
async def test_purchase_verification_debits_and_assigns_number(stack):
    await stack.user_with_balance("user-1", "1.00")
    google = await stack.add_service("Google", "0.25")

    verification = await stack.verifications.purchase_verification("user-1", google.id)

    assert verification.status == VerificationStatus.ACTIVE
    assert verification.price == Decimal("0.25")
    assert verification.phone_number == "+1 (555) 010-0001"
    assert verification.expires_at - verification.created_at == timedelta(minutes=5)
    assert await stack.credits.get_balance("user-1") == Decimal("0.75")

    latest = list(await stack.credits.get_credit_history("user-1"))[0]
    assert latest.type == TransactionType.DEDUCTION
    assert latest.amount == Decimal("0.25")
    assert latest.description == "Phone verification - Google"
    assert "Verification started" in stack.ledger_messages("user-1")


@pytest.mark.asyncio
async def test_insufficient_balance_creates_nothing(stack):
    await stack.user_with_balance("user-1", "0.10")
    google = await stack.add_service("Google", "0.25")

    with pytest.raises(InsufficientCreditsError):
        await stack.verifications.purchase_verification("user-1", google.id)

    assert await stack.credits.get_balance("user-1") == Decimal("0.10")
    assert list(await stack.verifications.list_user_verifications("user-1")) == []
    assert "Insufficient credits for verification" in stack.ledger_messages("user-1")


@pytest.mark.asyncio
async def test_number_provider_failure_rolls_back_debit(stack):
    await stack.user_with_balance("user-1", "1.00")
    google = await stack.add_service("Google", "0.25")
    stack.numbers.fail = True

    with pytest.raises(UpstreamUnavailableError):
        await stack.verifications.purchase_verification("user-1", google.id)

    assert await stack.credits.get_balance("user-1") == Decimal("1.00")
    assert list(await stack.verifications.list_user_verifications("user-1")) == []
    history = list(await stack.credits.get_credit_history("user-1"))
    assert [t.type for t in history] == [TransactionType.PURCHASE]
    mirrored = stack.ledger_path.read_text(encoding="utf-8")
    assert "Credits deducted" not in mirrored


@pytest.mark.asyncio
async def test_inactive_or_unknown_service_not_found(stack):
    await stack.user_with_balance("user-1", "1.00")
    retired = await stack.add_service("Retired", "0.25", is_active=False)

    with pytest.raises(NotFoundError):
        await stack.verifications.purchase_verification("user-1", retired.id)
    with pytest.raises(NotFoundError):
        await stack.verifications.purchase_verification("user-1", "missing")
    assert await stack.credits.get_balance("user-1") == Decimal("1.00")


@pytest.mark.asyncio
async def test_free_service_needs_no_balance(stack):
    await stack.user_with_balance("user-1", "0")
    free = await stack.add_service("Free", "0.00")

    verification = await stack.verifications.purchase_verification("user-1", free.id)

    assert verification.price == Decimal("0.00")
    assert await stack.credits.get_balance("user-1") == Decimal("0.00")


@pytest.mark.asyncio
async def test_verifications_are_private_to_their_owner(stack):
    await stack.user_with_balance("user-1", "1.00")
    await stack.user_with_balance("user-2", "1.00")
    google = await stack.add_service("Google", "0.25")
    verification = await stack.verifications.purchase_verification("user-1", google.id)

    found = await stack.verifications.get_verification("user-1", verification.id)
    assert found.id == verification.id
    with pytest.raises(NotFoundError):
        await stack.verifications.get_verification("user-2", verification.id)
    assert list(await stack.verifications.list_user_verifications("user-2")) == []


@pytest.mark.asyncio
async def test_list_is_newest_first(stack):
    await stack.user_with_balance("user-1", "1.00")
    google = await stack.add_service("Google", "0.25")
    first = await stack.verifications.purchase_verification("user-1", google.id)
    second = await stack.verifications.purchase_verification("user-1", google.id)

    listed = list(await stack.verifications.list_user_verifications("user-1"))
    assert [v.id for v in listed] == [second.id, first.id]


@pytest.mark.asyncio
async def test_receive_code_completes_once(stack):
    await stack.user_with_balance("user-1", "1.00")
    google = await stack.add_service("Google", "0.25")
    verification = await stack.verifications.purchase_verification("user-1", google.id)

    completed = await stack.verifications.receive_code(verification.id, " 123456 ")

    assert completed.status == VerificationStatus.COMPLETED
    assert completed.code == "123456"
    assert completed.completed_at is not None
    with pytest.raises(InvalidInputError, match="already completed"):
        await stack.verifications.receive_code(verification.id, "654321")


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["", "   ", "x" * 21])
async def test_receive_code_validates_length(stack, code):
    with pytest.raises(InvalidInputError):
        await stack.verifications.receive_code("1", code)


@pytest.mark.asyncio
async def test_mark_failed_refunds_price(stack):
    await stack.user_with_balance("user-1", "1.00")
    google = await stack.add_service("Google", "0.25")
    verification = await stack.verifications.purchase_verification("user-1", google.id)

    failed = await stack.verifications.mark_failed(verification.id, "carrier rejected")

    assert failed.status == VerificationStatus.FAILED
    assert await stack.credits.get_balance("user-1") == Decimal("1.00")
    latest = list(await stack.credits.get_credit_history("user-1"))[0]
    assert latest.type == TransactionType.REFUND
    assert latest.amount == Decimal("0.25")
