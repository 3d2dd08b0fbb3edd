"""Pytest configuration and fixtures."""

import random
from datetime import datetime, timezone

import pytest
from bson import ObjectId

from fakes import FakeCardRepository, FakeTransactionRepository, FakeUserRepository, stub_qr
from paysys.domains.auth.jwt_service import JWTService
from paysys.domains.auth.models import Identity
from paysys.domains.cards.services import CardService
from paysys.domains.transactions.services import TransactionService
from paysys.domains.users.service import UserService
from paysys.shared.clock import FixedClock
from paysys.shared.encryption_service import EncryptionService
from paysys.shared.payment_gateway import NO_LATENCY, PaymentGatewaySimulator

ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"
ACCESS_SECRET = "test-access-secret-0123456789abcdef"
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef"


@pytest.fixture
def clock() -> FixedClock:
    """Pinned to mid June 2025."""
    return FixedClock(datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def owner() -> Identity:
    return Identity(id=str(ObjectId()), email="owner@mail.com", first_name="Ana", last_name="Silva")


@pytest.fixture
def stranger() -> Identity:
    return Identity(id=str(ObjectId()), email="stranger@mail.com", first_name="Bruno", last_name="Costa")


@pytest.fixture
def encryption(clock) -> EncryptionService:
    return EncryptionService(ENCRYPTION_KEY, clock)


@pytest.fixture
def gateway(clock) -> PaymentGatewaySimulator:
    return PaymentGatewaySimulator(
        rng=random.Random(42),
        latency=NO_LATENCY,
        qr_renderer=stub_qr,
        clock=clock,
    )


@pytest.fixture
def transaction_repository() -> FakeTransactionRepository:
    return FakeTransactionRepository()


@pytest.fixture
def transaction_service(transaction_repository, gateway, clock) -> TransactionService:
    return TransactionService(transaction_repository, gateway, clock=clock)


@pytest.fixture
def card_repository() -> FakeCardRepository:
    return FakeCardRepository()


@pytest.fixture
def card_service(card_repository, encryption, clock) -> CardService:
    return CardService(card_repository, encryption, clock=clock)


@pytest.fixture
def jwt_service() -> JWTService:
    return JWTService(secret_key=ACCESS_SECRET, refresh_secret_key=REFRESH_SECRET)


@pytest.fixture
def user_repository() -> FakeUserRepository:
    return FakeUserRepository()


@pytest.fixture
def user_service(user_repository, jwt_service) -> UserService:
    return UserService(user_repository, jwt_service, bcrypt_rounds=4)
