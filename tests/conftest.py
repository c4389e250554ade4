"""Shared pytest fixtures.

MongoDB is replaced by an in-memory fake covering the subset of the async
collection API the services use; the identity provider by an httpx mock
transport serving a JWKS document and the admin endpoints.
"""

import asyncio
import copy
import inspect
import json
import time
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt
from pymongo.errors import PyMongoError

from timekeep.config import Config
from timekeep.core.core import Core

ISSUER = "https://idp.test/pool-1"
KEY_ID = "test-key-1"
ADMIN_URL = "https://idp.test/admin"


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


# === In-memory MongoDB ===
def _matches(doc: dict[str, Any], query: dict[str, Any]) -> bool:
    for key, condition in query.items():
        value = doc.get(key)
        if isinstance(condition, dict) and any(k.startswith("$") for k in condition):
            for op, operand in condition.items():
                if op == "$gt" and not (value is not None and value > operand):
                    return False
                if op == "$gte" and not (value is not None and value >= operand):
                    return False
                if op == "$lt" and not (value is not None and value < operand):
                    return False
                if op == "$lte" and not (value is not None and value <= operand):
                    return False
                if op == "$in" and value not in operand:
                    return False
        elif value != condition:
            return False
    return True


class FakeCursor:
    def __init__(self, documents: list[dict[str, Any]]) -> None:
        self._documents = documents
        self._skip = 0
        self._limit = 0

    def sort(self, key: str | list[tuple[str, int]], direction: int = 1) -> "FakeCursor":
        keys = [(key, direction)] if isinstance(key, str) else key
        for field, field_direction in reversed(keys):
            self._documents.sort(key=lambda d: d[field], reverse=field_direction < 0)
        return self

    def skip(self, count: int) -> "FakeCursor":
        self._skip = count
        return self

    def limit(self, count: int) -> "FakeCursor":
        self._limit = count
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        documents = self._documents[self._skip :]
        if self._limit:
            documents = documents[: self._limit]
        for doc in documents:
            yield doc


class FakeResult:
    def __init__(self, modified_count: int = 0, deleted_count: int = 0, inserted_id: Any = None) -> None:
        self.modified_count = modified_count
        self.deleted_count = deleted_count
        self.inserted_id = inserted_id


class FakeCollection:
    """Async collection over a list of documents, with failure injection per method."""

    def __init__(self) -> None:
        self.documents: list[dict[str, Any]] = []
        self.indexes: list[tuple[Any, dict[str, Any]]] = []
        self.failing: set[str] = set()
        self.calls: list[str] = []

    def fail(self, *methods: str) -> None:
        self.failing.update(methods)

    def _check(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failing:
            raise PyMongoError(f"simulated {method} failure")

    async def create_index(self, keys: Any, **kwargs: Any) -> str:
        self.indexes.append((keys, kwargs))
        return "index"

    def find(self, query: dict[str, Any] | None = None, projection: Any = None) -> FakeCursor:
        self._check("find")
        return FakeCursor([copy.deepcopy(d) for d in self.documents if _matches(d, query or {})])

    async def find_one(self, query: dict[str, Any]) -> dict[str, Any] | None:
        self._check("find_one")
        doc = next((d for d in self.documents if _matches(d, query)), None)
        return copy.deepcopy(doc)

    async def count_documents(self, query: dict[str, Any]) -> int:
        self._check("count_documents")
        return sum(1 for d in self.documents if _matches(d, query))

    async def insert_one(self, doc: dict[str, Any]) -> FakeResult:
        self._check("insert_one")
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", uuid4())
        self.documents.append(doc)
        return FakeResult(inserted_id=doc["_id"])

    async def update_one(self, query: dict[str, Any], update: dict[str, Any], upsert: bool = False) -> FakeResult:
        self._check("update_one")
        doc = self._update(query, update, upsert)
        return FakeResult(modified_count=1 if doc is not None else 0)

    async def find_one_and_update(
        self, query: dict[str, Any], update: dict[str, Any], upsert: bool = False, return_document: Any = None
    ) -> dict[str, Any] | None:
        self._check("find_one_and_update")
        return copy.deepcopy(self._update(query, update, upsert))

    async def delete_one(self, query: dict[str, Any]) -> FakeResult:
        self._check("delete_one")
        for index, doc in enumerate(self.documents):
            if _matches(doc, query):
                del self.documents[index]
                return FakeResult(deleted_count=1)
        return FakeResult()

    async def delete_many(self, query: dict[str, Any]) -> FakeResult:
        self._check("delete_many")
        before = len(self.documents)
        self.documents = [d for d in self.documents if not _matches(d, query)]
        return FakeResult(deleted_count=before - len(self.documents))

    def _update(self, query: dict[str, Any], update: dict[str, Any], upsert: bool) -> dict[str, Any] | None:
        doc = next((d for d in self.documents if _matches(d, query)), None)
        if doc is None:
            if not upsert:
                return None
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            doc.update(copy.deepcopy(update.get("$setOnInsert", {})))
            doc.setdefault("_id", uuid4())
            self.documents.append(doc)
        doc.update(copy.deepcopy(update.get("$set", {})))
        for field, amount in update.get("$inc", {}).items():
            doc[field] = doc.get(field, 0) + amount
        return doc


class FakeDatabase:
    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}

    def get_collection(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection())


# === Clock ===
class FrozenClock:
    """Replaces ``now()`` in the modules that read the wall clock."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


CLOCK_MODULES = (
    "timekeep.app",
    "timekeep.core.modules.session.models",
    "timekeep.core.modules.session.service",
    "timekeep.core.modules.security.models",
    "timekeep.core.modules.security.service",
)


@pytest.fixture
def clock(monkeypatch):
    frozen = FrozenClock(datetime.now(UTC).replace(microsecond=0))
    for module in CLOCK_MODULES:
        monkeypatch.setattr(f"{module}.now", frozen.now)
    return frozen


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setattr("timekeep.core.modules.security.service.BCRYPT_ROUNDS", 4)


# === Identity provider ===
@pytest.fixture(scope="session")
def rsa_private_pem():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def public_jwk(rsa_private_pem):
    private_key = serialization.load_pem_private_key(rsa_private_pem, password=None)
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM, format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    key = jwk.construct(public_pem, "RS256").to_dict()
    key["kid"] = KEY_ID
    key["use"] = "sig"
    return key


class IdentityProviderStub:
    """Serves ``{issuer}/.well-known/jwks.json``, the admin password endpoints and IP lookups."""

    def __init__(self, jwks: dict[str, Any]) -> None:
        self.jwks = jwks
        self.passwords: dict[str, str] = {}
        self.jwks_requests = 0
        self.jwks_status = 200
        self.admin_status: int | None = None
        self.locations: dict[str, dict[str, Any]] = {}
        self.geo_lookups: list[str] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/.well-known/jwks.json"):
            self.jwks_requests += 1
            return httpx.Response(self.jwks_status, json=self.jwks)
        if request.url.host == "geo.test":
            ip_address = path.rsplit("/", 1)[-1]
            self.geo_lookups.append(ip_address)
            return httpx.Response(200, json=self.locations.get(ip_address, {"status": "fail", "message": "reserved range"}))
        if path.startswith("/admin/") and self.admin_status is not None:
            return httpx.Response(self.admin_status, json={})
        if path == "/admin/auth/verify":
            payload = json.loads(request.content)
            if self.passwords.get(payload["username"]) == payload["password"]:
                return httpx.Response(200, json={"valid": True})
            return httpx.Response(401, json={"valid": False})
        if path.startswith("/admin/users/") and path.endswith("/password"):
            username = path.removeprefix("/admin/users/").removesuffix("/password")
            self.passwords[username] = json.loads(request.content)["password"]
            return httpx.Response(200, json={})
        return httpx.Response(404)


@pytest.fixture
def idp(public_jwk):
    return IdentityProviderStub({"keys": [public_jwk]})


@pytest.fixture
def http_client(idp):
    return httpx.AsyncClient(transport=httpx.MockTransport(idp.handle))


@pytest.fixture
def make_token(rsa_private_pem):
    """Build a signed access token; keyword arguments override claims (None removes one)."""

    def _make_token(sub: str = "user-1", kid: str = KEY_ID, **overrides: Any) -> str:
        issued_at = int(time.time())
        claims: dict[str, Any] = {
            "sub": sub,
            "iss": ISSUER,
            "iat": issued_at,
            "auth_time": issued_at,
            "exp": issued_at + 3600,
            "email": f"{sub}@example.com",
            "token_use": "access",
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, rsa_private_pem.decode(), algorithm="RS256", headers={"kid": kid})

    return _make_token


# === Application ===
@pytest.fixture
def config():
    return Config(
        _env_file=None,
        database_url="mongodb://localhost:27017/timekeep_test",
        identity_issuer=ISSUER,
        identity_admin_url=ADMIN_URL,
        sweep_batch_delay_seconds=0,
    )


@pytest.fixture
def database():
    return FakeDatabase()


@pytest.fixture
def sessions_collection(database):
    return database.get_collection("sessions")


@pytest.fixture
def core(config, database, http_client):
    """Core over the fake database. Tests await ``core.on_start()`` themselves."""
    core = Core(config, database)
    core.services.token.http_client = http_client
    return core
