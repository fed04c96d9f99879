from __future__ import annotations

import json

from phone_credits.schema_generator import (
    generate_logical_schema,
    render_nosql_schema,
    render_sql_ddl,
)


def test_logical_schema_covers_all_collections():
    schema = generate_logical_schema()
    assert set(schema) == {
        "users",
        "transactions",
        "services",
        "pricing_settings",
        "verifications",
        "rentals",
        "credit_ledger",
    }
    users = schema["users"]
    assert users["properties"]["credit_balance"]["type"] == "decimal"
    assert users["properties"]["email"]["nullable"] is True
    assert "credit_balance" in users["required"]
    assert schema["services"]["unique"] == ["slug"]


def test_sql_ddl_uses_fixed_point_money():
    ddl = render_sql_ddl(generate_logical_schema())
    assert 'CREATE TABLE IF NOT EXISTS "transactions"' in ddl
    assert '"amount" NUMERIC(12, 2) NOT NULL' in ddl
    assert 'UNIQUE ("external_payment_ref")' in ddl
    assert '"details" JSONB' in ddl


def test_nosql_schema_is_json():
    rendered = json.loads(render_nosql_schema(generate_logical_schema()))
    assert rendered["rentals"]["primary_key"] == "id"
