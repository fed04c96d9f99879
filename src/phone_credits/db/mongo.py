from __future__ import annotations

from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Mapping, Optional, Type, TypeVar
from uuid import uuid4

from bson.decimal128 import Decimal128
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from .base import BaseDBManager
from ..errors import DuplicateRecordError, NotFoundError
from ..models.base import DBSerializableModel, to_money
from ..models.catalog import PricingServiceType, PricingSetting, Service
from ..models.ledger import LedgerEntry
from ..models.lifecycle import Rental, RentalStatus, Verification, VerificationStatus
from ..models.transaction import Transaction
from ..models.user import UserAccount


TModel = TypeVar("TModel", bound=DBSerializableModel)


def _to_bson(value: Any) -> Any:
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _to_bson(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_bson(v) for v in value]
    return value


def _from_bson(value: Any) -> Any:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, dict):
        return {k: _from_bson(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_bson(v) for v in value]
    return value


class MongoDBManager(BaseDBManager):
    """
    MongoDB implementation of BaseDBManager using motor (async driver).

    IDs are stored as string-based `_id` fields and mirrored in the `id`
    attribute of each Pydantic model, which keeps the rest of the system
    agnostic of MongoDB specifics. Money is stored as Decimal128 so balance
    updates can use `$inc` with an exact conditional filter.

    `transaction()` runs a multi-document transaction on a client session,
    which requires a replica set. With `use_transactions=False` it degrades
    to per-document atomicity.
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        client: Optional[AsyncIOMotorClient] = None,
        use_transactions: bool = True,
    ) -> None:
        self._db = database
        self._client = client
        self._use_transactions = use_transactions and client is not None
        self._session: ContextVar[Optional[AsyncIOMotorClientSession]] = ContextVar(
            f"mongo_session_{id(self)}", default=None
        )
        self._pending: ContextVar[Optional[List[Callable[[], None]]]] = ContextVar(
            f"mongo_pending_{id(self)}", default=None
        )

    @classmethod
    def from_client_uri(
        cls, uri: str, db_name: str, use_transactions: bool = True
    ) -> "MongoDBManager":
        client = AsyncIOMotorClient(uri, tz_aware=False)
        return cls(client[db_name], client=client, use_transactions=use_transactions)

    async def ensure_indexes(self) -> None:
        await self._db[Service.collection_name].create_index("slug", unique=True)
        await self._db[PricingSetting.collection_name].create_index(
            "service_type", unique=True
        )
        await self._db[Transaction.collection_name].create_index(
            [("user_id", ASCENDING), ("created_at", DESCENDING)]
        )
        await self._db[Transaction.collection_name].create_index(
            "external_payment_ref",
            unique=True,
            partialFilterExpression={"external_payment_ref": {"$type": "string"}},
        )
        for model in (Verification, Rental):
            await self._db[model.collection_name].create_index(
                [("user_id", ASCENDING), ("created_at", DESCENDING)]
            )
            await self._db[model.collection_name].create_index(
                [("status", ASCENDING), ("expires_at", ASCENDING)]
            )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        client = self._client
        if client is None or not self._use_transactions or self._session.get() is not None:
            yield
            return

        callbacks: List[Callable[[], None]] = []
        async with await client.start_session() as session:
            async with session.start_transaction():
                token = self._session.set(session)
                pending_token = self._pending.set(callbacks)
                try:
                    yield
                finally:
                    self._pending.reset(pending_token)
                    self._session.reset(token)
        for callback in callbacks:
            callback()

    def on_commit(self, callback: Callable[[], None]) -> None:
        pending = self._pending.get()
        if pending is None:
            callback()
        else:
            pending.append(callback)

    @property
    def _s(self) -> Optional[AsyncIOMotorClientSession]:
        return self._session.get()

    # Helper utilities
    @staticmethod
    def _prepare_insert(model: TModel) -> Dict[str, Any]:
        model_id = getattr(model, "id", None)
        if not model_id:
            model_id = uuid4().hex
            setattr(model, "id", model_id)
        data = _to_bson(model.serialize_for_db())
        data["_id"] = model_id
        return data

    @staticmethod
    def _prepare_update(model: TModel) -> Dict[str, Any]:
        model_id = getattr(model, "id", None)
        if not model_id:
            raise ValueError("Model must have id to be updated")
        data = _to_bson(model.serialize_for_db())
        data["_id"] = model_id
        return data

    @staticmethod
    def _decode(model_cls: Type[TModel], doc: Optional[Mapping[str, Any]]) -> Optional[TModel]:
        if doc is None:
            return None
        data = _from_bson(dict(doc))
        data["id"] = str(data.pop("_id"))
        return model_cls.model_validate(data)

    async def _find_many(
        self,
        model_cls: Type[TModel],
        query: Dict[str, Any],
        sort: Optional[List[tuple[str, int]]] = None,
    ) -> List[TModel]:
        cursor = self._db[model_cls.collection_name].find(query, session=self._s)
        if sort:
            cursor = cursor.sort(sort)
        docs = await cursor.to_list(length=None)
        return [self._decode(model_cls, d) for d in docs if d is not None]  # type: ignore[misc]

    async def _insert(self, model: TModel) -> TModel:
        col = self._db[model.collection_name]
        try:
            await col.insert_one(self._prepare_insert(model), session=self._s)
        except DuplicateKeyError as exc:
            raise DuplicateRecordError(f"Duplicate {model.collection_name} record") from exc
        return model

    async def _replace(self, model: TModel) -> TModel:
        col = self._db[model.collection_name]
        data = self._prepare_update(model)
        await col.replace_one({"_id": data["_id"]}, data, upsert=False, session=self._s)
        return model

    async def _get(self, model_cls: Type[TModel], model_id: str) -> Optional[TModel]:
        doc = await self._db[model_cls.collection_name].find_one(
            {"_id": model_id}, session=self._s
        )
        return self._decode(model_cls, doc)

    # User operations
    async def add_user(self, user: UserAccount) -> UserAccount:
        return await self._insert(user)

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        return await self._get(UserAccount, user_id)

    async def update_user(self, user: UserAccount) -> UserAccount:
        # Balance is owned by adjust_user_balance; never overwrite it here.
        col = self._db[UserAccount.collection_name]
        data = self._prepare_update(user)
        data.pop("credit_balance", None)
        await col.update_one({"_id": data.pop("_id")}, {"$set": data}, session=self._s)
        return user

    async def adjust_user_balance(
        self,
        user_id: str,
        delta: Decimal,
        minimum: Optional[Decimal] = Decimal("0.00"),
    ) -> Optional[UserAccount]:
        delta = to_money(delta)
        col = self._db[UserAccount.collection_name]
        query: Dict[str, Any] = {"_id": user_id}
        if minimum is not None:
            # balance + delta >= minimum  <=>  balance >= minimum - delta
            query["credit_balance"] = {"$gte": Decimal128(to_money(minimum - delta))}
        doc = await col.find_one_and_update(
            query,
            {
                "$inc": {"credit_balance": Decimal128(delta)},
                "$set": {"updated_at": datetime.utcnow()},
            },
            return_document=ReturnDocument.AFTER,
            session=self._s,
        )
        if doc is None:
            if await col.count_documents({"_id": user_id}, limit=1, session=self._s) == 0:
                raise NotFoundError("User not found")
            return None
        return self._decode(UserAccount, doc)

    # Transaction log
    async def add_transaction(self, tx: Transaction) -> Transaction:
        try:
            await self._db[Transaction.collection_name].insert_one(
                self._prepare_insert(tx), session=self._s
            )
        except DuplicateKeyError as exc:
            raise DuplicateRecordError("Payment has already been applied") from exc
        return tx

    async def get_transactions(self, user_id: str) -> Iterable[Transaction]:
        return await self._find_many(
            Transaction, {"user_id": user_id}, sort=[("created_at", DESCENDING)]
        )

    async def get_transaction_by_external_ref(
        self, external_payment_ref: str
    ) -> Optional[Transaction]:
        doc = await self._db[Transaction.collection_name].find_one(
            {"external_payment_ref": external_payment_ref}, session=self._s
        )
        return self._decode(Transaction, doc)

    # Catalog
    async def add_service(self, service: Service) -> Service:
        return await self._insert(service)

    async def get_service(self, service_id: str) -> Optional[Service]:
        return await self._get(Service, service_id)

    async def get_service_by_slug(self, slug: str) -> Optional[Service]:
        doc = await self._db[Service.collection_name].find_one({"slug": slug}, session=self._s)
        return self._decode(Service, doc)

    async def get_active_services(self) -> Iterable[Service]:
        return await self._find_many(Service, {"is_active": True}, sort=[("name", ASCENDING)])

    async def get_pricing_settings(self) -> Iterable[PricingSetting]:
        return await self._find_many(PricingSetting, {})

    async def get_pricing_setting(
        self, service_type: PricingServiceType
    ) -> Optional[PricingSetting]:
        doc = await self._db[PricingSetting.collection_name].find_one(
            {"service_type": PricingServiceType(service_type).value}, session=self._s
        )
        return self._decode(PricingSetting, doc)

    async def add_pricing_setting(self, setting: PricingSetting) -> PricingSetting:
        return await self._insert(setting)

    async def update_pricing_setting(self, setting: PricingSetting) -> PricingSetting:
        col = self._db[PricingSetting.collection_name]
        result = await col.update_one(
            {"service_type": setting.service_type.value},
            {
                "$set": {
                    "base_price": Decimal128(setting.base_price),
                    "updated_at": setting.updated_at,
                }
            },
            session=self._s,
        )
        if result.matched_count == 0:
            raise NotFoundError("Pricing not found")
        return setting

    # Verifications
    async def add_verification(self, verification: Verification) -> Verification:
        return await self._insert(verification)

    async def get_verification(self, verification_id: str) -> Optional[Verification]:
        return await self._get(Verification, verification_id)

    async def update_verification(self, verification: Verification) -> Verification:
        return await self._replace(verification)

    async def get_user_verifications(self, user_id: str) -> Iterable[Verification]:
        return await self._find_many(
            Verification, {"user_id": user_id}, sort=[("created_at", DESCENDING)]
        )

    async def get_expired_verifications(self, as_of: datetime) -> Iterable[Verification]:
        return await self._find_many(
            Verification,
            {
                "status": {
                    "$in": [VerificationStatus.PENDING.value, VerificationStatus.ACTIVE.value]
                },
                "expires_at": {"$lt": as_of},
            },
        )

    # Rentals
    async def add_rental(self, rental: Rental) -> Rental:
        return await self._insert(rental)

    async def get_rental(self, rental_id: str) -> Optional[Rental]:
        return await self._get(Rental, rental_id)

    async def update_rental(self, rental: Rental) -> Rental:
        return await self._replace(rental)

    async def get_user_rentals(self, user_id: str) -> Iterable[Rental]:
        return await self._find_many(
            Rental, {"user_id": user_id}, sort=[("created_at", DESCENDING)]
        )

    async def get_expired_rentals(self, as_of: datetime) -> Iterable[Rental]:
        return await self._find_many(
            Rental,
            {"status": RentalStatus.ACTIVE.value, "expires_at": {"$lt": as_of}},
        )

    # Ledger
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        await self._db[LedgerEntry.collection_name].insert_one(
            self._prepare_insert(entry), session=self._s
        )
        return entry
