import hashlib
import logging
from typing import Dict, List, Optional, Tuple

import base58
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi.testclient import TestClient

from userbase.core.config import Settings
from userbase.db.models import User
from userbase.db.session import Database
from userbase.main import create_app
from userbase.services.hive_client import HiveAccount, HiveAccountNotFound

BASE = "/api/v1/userbase"


class HiveKey:
    """A throwaway secp256k1 posting key in Hive's STM... text form."""

    def __init__(self):
        self.private_key = ec.generate_private_key(ec.SECP256K1())
        point = self.private_key.public_key().public_bytes(Encoding.X962, PublicFormat.CompressedPoint)
        checksum = hashlib.sha256(point).digest()[:4]
        self.public_key = "STM" + base58.b58encode(point + checksum).decode()

    def sign(self, message: str, recovery_byte: bool = True) -> str:
        der = self.private_key.sign(message.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        body = r.to_bytes(32, "big").hex() + s.to_bytes(32, "big").hex()
        return ("1f" + body) if recovery_byte else body


class EvmWallet:
    def __init__(self):
        self.account = Account.create()
        self.address = self.account.address

    def sign(self, message: str) -> str:
        signed = Account.sign_message(encode_defunct(text=message), private_key=self.account.key)
        return "0x" + bytes(signed.signature).hex()


class FakeHiveClient:
    """In-memory stand-in for the Hive JSON-RPC node."""

    def __init__(self):
        self.accounts: Dict[str, HiveAccount] = {}
        self.calls: List[str] = []

    def add_account(self, name: str, posting_keys: Optional[List[str]] = None, json_metadata: Optional[dict] = None) -> HiveAccount:
        account = HiveAccount(name=name, posting_keys=posting_keys or [], json_metadata=json_metadata or {})
        self.accounts[name] = account
        return account

    async def get_account(self, handle: str) -> HiveAccount:
        self.calls.append(handle)
        if handle not in self.accounts:
            raise HiveAccountNotFound()
        return self.accounts[handle]

    async def account_exists(self, handle: str) -> bool:
        return handle in self.accounts

    async def get_dynamic_global_properties(self) -> dict:
        return {"head_block_number": 1}


class FakeMailer:
    def __init__(self):
        self.sent: List[Tuple[str, str]] = []

    async def send_login_link(self, to: str, link: str) -> None:
        self.sent.append((to, link))

    @property
    def last_token(self) -> str:
        link = self.sent[-1][1]
        return link.split("token=")[1].split("&")[0]


@pytest.fixture(autouse=True)
def test_logger():
    logger = logging.getLogger("userbase")
    logger.setLevel(logging.DEBUG)
    yield logger


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        ENVIRONMENT="test",
        USERBASE_INTERNAL_TOKEN="internal-secret",
        APP_ORIGIN="http://testserver",
    )


@pytest.fixture
def database(settings):
    database = Database.from_settings(settings)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def db(database):
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def hive() -> FakeHiveClient:
    return FakeHiveClient()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def app(settings, database, hive, mailer):
    app = create_app(settings)
    app.state.database.dispose()
    app.state.database = database
    app.state.hive_client = hive
    app.state.mailer = mailer
    app.state.health_checker.database = database
    app.state.health_checker.hive_client = hive
    return app


@pytest.fixture
def make_client(app):
    def factory() -> TestClient:
        return TestClient(app)
    return factory


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def login(make_client):
    """Bootstrap a fresh EVM user on its own client; returns (client, user_id, wallet)."""
    def factory():
        wallet = EvmWallet()
        client = make_client()
        response = client.post(f"{BASE}/auth/bootstrap", json={"type": "evm", "identifier": wallet.address})
        assert response.status_code == 200, response.text
        return client, response.json()["user_id"], wallet
    return factory


@pytest.fixture
def hive_key() -> HiveKey:
    return HiveKey()


@pytest.fixture
def wallet() -> EvmWallet:
    return EvmWallet()


@pytest.fixture
def other_hive_key() -> HiveKey:
    return HiveKey()


@pytest.fixture
def other_wallet() -> EvmWallet:
    return EvmWallet()


@pytest.fixture
def make_user(db):
    """Insert and commit an active user; extra kwargs override columns."""
    def factory(handle: Optional[str] = None, **columns) -> User:
        user = User(handle=handle, display_name=columns.pop("display_name", handle), **columns)
        db.add(user)
        db.commit()
        return user
    return factory
