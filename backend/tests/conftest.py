"""
Pytest fixtures for the Lune billing backend tests.

Provides test database setup, entity factories, and test client.
"""

from datetime import date, datetime, timedelta

import pytest
from lunebilling import create_app
from lunebilling.config import TestConfig
from lunebilling.extensions import db
from lunebilling.models import (
    Device,
    Invoice,
    Office,
    UsageRecord,
    User,
    ROLE_ADMIN,
    ROLE_USER,
    INVOICE_UNPAID,
)
from lunebilling.services.auth_service import hash_password
from lunebilling.time_utils import utcnow


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def _password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        app.extensions["email_sender"].outbox.clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def outbox(app):
    return app.extensions["email_sender"].outbox


@pytest.fixture(scope='function')
def make_user(db_session, _password_hash):
    counter = {"n": 0}

    def _make(username=None, role=ROLE_USER, is_active=True, email_notifications=True):
        counter["n"] += 1
        username = username or f"user{counter['n']}"
        user = User(
            username=username,
            email=f"{username}@example.com",
            password_hash=_password_hash,
            role=role,
            is_active=is_active,
            email_notifications=email_notifications,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def admin_user(make_user):
    return make_user("admin", role=ROLE_ADMIN)


@pytest.fixture(scope='function')
def regular_user(make_user):
    return make_user("staff", role=ROLE_USER)


@pytest.fixture(scope='function')
def make_office(db_session):
    counter = {"n": 0}

    def _make(name=None, npi_id=None, is_deleted=False):
        counter["n"] += 1
        office = Office(
            name=name or f"Smile Dental {counter['n']}",
            npi_id=npi_id or f"{1000000000 + counter['n']}",
            state="CA",
            town="Fresno",
            address=f"{counter['n']} Main Street",
            phone_number="555-0100",
            email=f"office{counter['n']}@example.com",
            is_deleted=is_deleted,
        )
        db_session.add(office)
        db_session.commit()
        return office

    return _make


@pytest.fixture(scope='function')
def make_device(db_session):
    counter = {"n": 0}

    def _make(office, serial_number=None, is_deleted=False):
        counter["n"] += 1
        device = Device(
            serial_number=serial_number or f"LUNE-{counter['n']:04d}",
            office_id=office.id,
            purchase_date=date(2025, 1, 15),
            connected_phone="555-0199",
            sbc_identifier=f"SBC-{counter['n']:04d}",
            plan_type="standard",
            is_deleted=is_deleted,
        )
        db_session.add(device)
        db_session.commit()
        return device

    return _make


@pytest.fixture(scope='function')
def make_invoice(db_session):
    counter = {"n": 0}

    def _make(office, total_amount_cents=10000, status=INVOICE_UNPAID, generated_at=None, is_deleted=False):
        counter["n"] += 1
        invoice = Invoice(
            office_id=office.id,
            invoice_number=f"INV-TEST{counter['n']:06d}",
            month=9,
            year=2026,
            total_amount_cents=total_amount_cents,
            status=status,
            generated_at=generated_at or utcnow(),
            invoice_data={"type": "custom", "items": []},
            is_deleted=is_deleted,
        )
        db_session.add(invoice)
        db_session.commit()
        return invoice

    return _make


@pytest.fixture(scope='function')
def make_usage(db_session):
    def _make(device, start_time=None, seconds=600, button_number=1):
        start_time = start_time or datetime(2026, 9, 10, 9, 0)
        record = UsageRecord(
            device_id=device.id,
            button_number=button_number,
            start_time=start_time,
            end_time=start_time + timedelta(seconds=seconds),
            duration_seconds=seconds,
            usage_date=start_time.date(),
        )
        db_session.add(record)
        db_session.commit()
        return record

    return _make


def get_auth_token(client, username: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.username))


@pytest.fixture(scope='function')
def user_headers(client, regular_user):
    return auth_headers(get_auth_token(client, regular_user.username))
