"""Pytest fixtures for testing"""

import uuid
import pytest
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Generator, Optional
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from billing_engine.api.dependencies import get_db
from billing_engine.api.main import create_app
from billing_engine.config import Settings
from billing_engine.infrastructure.database.models import Base, Room, Tenant, TenantDeposit
from billing_engine.infrastructure.database.session import create_db_engine, create_session_factory


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_db_engine(TEST_DATABASE_URL)
TestingSessionLocal = create_session_factory(engine)


@dataclass
class Tenancy:
    tenant_id: uuid.UUID
    room_id: uuid.UUID


@pytest.fixture
def test_settings() -> Settings:
    """Settings pointing at the test database, with instant retries"""
    return Settings(
        database_url=TEST_DATABASE_URL,
        notification_webhook_url="http://notifications.test/events",
        webhook_backoff_base=0.0,
        settlement_backoff_base=0.0,
    )


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db: Session, test_settings: Settings) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app(test_settings)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def make_tenancy(db: Session) -> Callable[..., Tenancy]:
    """Factory seeding an occupied room, its tenant and optional active deposits"""

    def _make(
        monthly_rent: str = "3500",
        rent_start: date = date(2024, 1, 1),
        contract_end: Optional[date] = date(2024, 12, 31),
        initial_reading: str = "100",
        advance: Optional[str] = None,
        security: Optional[str] = None,
        room_number: str = "101",
        name: str = "Ana Reyes",
    ) -> Tenancy:
        room = Room(room_number=room_number, monthly_rent=Decimal(monthly_rent), status="occupied")
        db.add(room)
        db.flush()

        tenant = Tenant(
            name=name,
            email=f"{room_number}@example.com",
            room_id=room.id,
            rent_start=rent_start,
            contract_start_date=rent_start,
            contract_end_date=contract_end,
            initial_electric_reading=Decimal(initial_reading),
            status="active",
        )
        db.add(tenant)
        db.flush()
        room.tenant_id = tenant.id

        for kind, amount in (("advance", advance), ("security", security)):
            if amount is not None:
                db.add(
                    TenantDeposit(
                        tenant_id=tenant.id,
                        kind=kind,
                        initial_amount=Decimal(amount),
                        remaining_balance=Decimal(amount),
                        status="active",
                    )
                )

        db.commit()
        return Tenancy(tenant_id=tenant.id, room_id=room.id)

    return _make


@pytest.fixture
def tenancy(make_tenancy) -> Tenancy:
    """Tenant at 3500/month, meter at 100, no deposits"""
    return make_tenancy()
