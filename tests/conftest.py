"""Shared fixtures.

Environment variables are set before any application module is imported,
since ``config`` reads them at import time.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["INIT_BACKOFF_SECONDS"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

import pytest
import pytz
from sqlalchemy.orm import sessionmaker

from config import CLASSES_COLLECTION, USERS_COLLECTION
from core.database import build_engine, init_db
from core.exceptions import StoreError
from utils.document_store import DocumentSnapshot, DocumentStore, SqlDocumentStore
from utils.identity_store import SqlIdentityStore


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=pytz.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class GatedStore(DocumentStore):
    """Wraps a store to count reads, hold class queries, and inject failures."""

    def __init__(self, inner: DocumentStore):
        self.inner = inner
        self.gate = asyncio.Event()
        self.gate.set()
        self.user_reads = 0
        self.class_queries: List[Any] = []
        self.finished_queries: List[Any] = []
        self.held: Dict[Any, asyncio.Event] = {}
        self.failing_codes: Set[str] = set()
        self.fail_user_reads = False
        self.fail_writes_to: Set[str] = set()

    async def get_document(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        if collection == USERS_COLLECTION:
            self.user_reads += 1
            if self.fail_user_reads:
                raise StoreError("user read failed")
        return await self.inner.get_document(collection, doc_id)

    async def query_documents(self, collection: str, field_name: str, value: Any):
        if collection == CLASSES_COLLECTION:
            self.class_queries.append(value)
            await self.gate.wait()
            if value in self.held:
                await self.held[value].wait()
            if value in self.failing_codes:
                raise StoreError(f"query for {value} failed")
            result = await self.inner.query_documents(collection, field_name, value)
            self.finished_queries.append(value)
            return result
        return await self.inner.query_documents(collection, field_name, value)

    def hold(self, code: Any) -> asyncio.Event:
        """Hold queries for ``code`` until the returned event is set."""
        self.held[code] = asyncio.Event()
        return self.held[code]

    async def list_documents(self, collection: str):
        return await self.inner.list_documents(collection)

    async def set_document(self, collection, doc_id, fields, merge=False):
        if collection in self.fail_writes_to:
            raise StoreError(f"write to {collection} failed")
        await self.inner.set_document(collection, doc_id, fields, merge=merge)

    async def update_field(self, collection, doc_id, field_name, value):
        await self.inner.update_field(collection, doc_id, field_name, value)

    async def check_connection(self) -> None:
        await self.inner.check_connection()


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def document_store(session_factory) -> SqlDocumentStore:
    return SqlDocumentStore(session_factory)


@pytest.fixture
def identity_store(session_factory) -> SqlIdentityStore:
    return SqlIdentityStore(session_factory, bcrypt_rounds=4)


@pytest.fixture
def gated_store(document_store) -> GatedStore:
    return GatedStore(document_store)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


async def seed_user(store: DocumentStore, user_id: str, classes: List[str], **fields) -> None:
    data: Dict[str, Any] = {"email": f"{user_id}@example.com", "enrolledClasses": classes}
    data.update(fields)
    await store.set_document(USERS_COLLECTION, user_id, data)


async def seed_class(
    store: DocumentStore, class_id: str, code: str, unlocked: List[str], **fields
) -> None:
    data: Dict[str, Any] = {"code": code, "unlockedCourses": unlocked, "students": []}
    data.update(fields)
    await store.set_document(CLASSES_COLLECTION, class_id, data)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)
