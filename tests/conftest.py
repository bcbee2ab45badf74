import os

# must be set before the app settings are imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from solders.keypair import Keypair
from typing import Generator

from main import app
from app.core.config import settings
from app.core.dependencies import get_issuer, get_settlement_engine
from app.core.solana_auth import create_sign_in_challenge, sign_in
from app.db.base import Base
from app.db.session import get_db, init_db
from app.services.asset_registry import save_loyalty_asset
from app.services.issuer_wallet import IssuerWallet
from app.services.settlement import SettlementEngine
from tests.fake_ledger import FakeLedger


# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

SOL = 1_000_000_000
SIGN_IN_DOMAIN = "example.com"


def override_get_db() -> Generator:
    """Override database dependency for testing"""
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def clean_tables():
    """Fresh tables for every test"""
    init_db(engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def sign_in_domain(monkeypatch):
    """Passes are only accepted for the configured sign-in domain"""
    monkeypatch.setattr(settings, "SIGN_IN_DOMAIN", SIGN_IN_DOMAIN)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def settlement(ledger: FakeLedger) -> SettlementEngine:
    return SettlementEngine(ledger)


@pytest.fixture
def issuer(ledger: FakeLedger) -> Keypair:
    keypair = Keypair()
    ledger.airdrop(keypair.pubkey(), 10 * SOL)
    return keypair


@pytest.fixture
def holder() -> Keypair:
    return Keypair()


@pytest.fixture
def asset(settlement: SettlementEngine, issuer: Keypair, db):
    """Loyalty asset created on the fake ledger and registered in the database"""
    created = settlement.create_asset(issuer)
    save_loyalty_asset(db, created)
    return created


@pytest.fixture
def make_proof(holder: Keypair):
    """Sign a standard challenge for the holder; returns (challenge, proof)"""

    def _make(nonce: str = "N1nonceValue", domain: str = SIGN_IN_DOMAIN, keypair: Keypair = None):
        keypair = keypair or holder
        challenge = create_sign_in_challenge(str(keypair.pubkey()), nonce, domain=domain)
        return challenge, sign_in(keypair, challenge)

    return _make


@pytest.fixture
def client(settlement: SettlementEngine, issuer: Keypair) -> TestClient:
    """Create a test client for the FastAPI application"""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settlement_engine] = lambda: settlement
    app.dependency_overrides[get_issuer] = lambda: IssuerWallet(issuer)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
