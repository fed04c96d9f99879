from __future__ import annotations

from decimal import Decimal

import pytest
from bson.decimal128 import Decimal128

from phone_credits.db.mongo import MongoDBManager, _from_bson, _to_bson
from phone_credits.models.transaction import Transaction, TransactionType


def test_money_and_enums_are_stored_exactly():
    tx = Transaction(
        user_id="user-1",
        type=TransactionType.DEDUCTION,
        amount=Decimal("0.25"),
        description="Phone verification - Google",
    )

    doc = MongoDBManager._prepare_insert(tx)

    assert doc["_id"] == tx.id
    assert doc["amount"] == Decimal128("0.25")
    assert doc["type"] == "deduction"
    assert "external_payment_ref" not in doc


def test_documents_decode_back_to_models():
    doc = {
        "_id": "abc",
        "user_id": "user-1",
        "type": "purchase",
        "amount": Decimal128("10.00"),
        "description": "Credit purchase",
        "status": "completed",
        "external_payment_ref": "pi_123",
    }

    tx = MongoDBManager._decode(Transaction, doc)

    assert tx.id == "abc"
    assert tx.amount == Decimal("10.00")
    assert tx.type == TransactionType.PURCHASE


def test_nested_values_convert():
    value = {"prices": [Decimal("1.50"), Decimal("5.00")], "kind": TransactionType.REFUND}
    stored = _to_bson(value)
    assert stored == {"prices": [Decimal128("1.50"), Decimal128("5.00")], "kind": "refund"}
    assert _from_bson(stored)["prices"] == [Decimal("1.50"), Decimal("5.00")]


@pytest.mark.asyncio
async def test_transaction_without_a_client_falls_back_to_single_writes():
    db = MongoDBManager(database={}, client=None)
    committed = []

    async with db.transaction():
        db.on_commit(lambda: committed.append("inside"))

    assert committed == ["inside"]
