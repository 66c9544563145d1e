"""
Lifecycle engine tests.

Verifies:
- Soft delete / restore / permanent delete state transitions
- Office soft delete cascades onto its lune machines, restore reverses it
- Permanent delete leaves no rows referencing the office
- A failing step rolls back every earlier step
- Users can never delete themselves; admins can never be purged
"""

from dataclasses import replace

import pytest
from sqlalchemy.exc import OperationalError

from lunebilling.extensions import db
from lunebilling.models import Device, Invoice, Office, PaymentIntent, SessionToken, UsageRecord, User, ROLE_ADMIN
from lunebilling.services import session_service
from lunebilling.services.lifecycle_service import (
    DEFAULT_DESCRIPTORS,
    DEVICE_DESCRIPTOR,
    OFFICE_DESCRIPTOR,
    OFFICE_INVOICES_STEP,
    OFFICE_USAGE_STEP,
    DeleteStep,
    LifecycleEngine,
    LifecycleErrorKind,
)


@pytest.fixture
def engine(db_session):
    return LifecycleEngine(db_session)


def _snapshot():
    """Every row of every table, ordered by primary key."""
    snapshot = {}
    for table in db.metadata.sorted_tables:
        rows = db.session.execute(table.select().order_by(*table.primary_key.columns)).all()
        snapshot[table.name] = [tuple(row) for row in rows]
    return snapshot


def _count(model, **filters):
    return db.session.query(model).filter_by(**filters).count()


@pytest.fixture
def populated_office(make_office, make_device, make_invoice, make_usage):
    office = make_office("Bright Smiles")
    d1 = make_device(office)
    d2 = make_device(office)
    make_invoice(office, total_amount_cents=5000)
    make_invoice(office, total_amount_cents=7000)
    make_usage(d1, seconds=400)
    make_usage(d2, seconds=900)
    return office.id, d1.id, d2.id


# =============================================================================
# SOFT DELETE / RESTORE
# =============================================================================


class TestSoftDelete:
    def test_soft_delete_office_cascades_to_devices(self, engine, populated_office, admin_user):
        office_id, d1, d2 = populated_office

        result = engine.soft_delete("office", office_id, admin_user.id)

        assert result.ok
        assert result.value == {"id": office_id, "entity_type": "office", "cascaded": 2}
        office = db.session.get(Office, office_id)
        assert office.is_deleted is True
        assert office.deleted_at is not None
        assert _count(Device, office_id=office_id, is_deleted=True) == 2
        # Invoices and usage are untouched by a soft delete
        assert _count(Invoice, office_id=office_id, is_deleted=False) == 2
        assert _count(UsageRecord) == 2

    def test_soft_delete_twice_is_invalid_transition(self, engine, make_office, admin_user):
        office_id = make_office().id
        assert engine.soft_delete("office", office_id, admin_user.id).ok

        result = engine.soft_delete("office", office_id, admin_user.id)

        assert not result.ok
        assert result.error.kind == LifecycleErrorKind.INVALID_STATE_TRANSITION
        assert result.error.http_status == 400

    def test_soft_delete_missing_is_not_found(self, engine, db_session, admin_user):
        result = engine.soft_delete("device", 9999, admin_user.id)

        assert result.error.kind == LifecycleErrorKind.NOT_FOUND
        assert result.error.http_status == 404

    def test_unknown_entity_type(self, engine, db_session):
        result = engine.soft_delete("widget", 1, None)

        assert result.error.kind == LifecycleErrorKind.VALIDATION_ERROR
        assert "widget" in result.error.message

    def test_soft_delete_invoice_sets_deleted_at(self, engine, make_office, make_invoice, admin_user):
        invoice_id = make_invoice(make_office()).id

        assert engine.soft_delete("invoice", invoice_id, admin_user.id).ok

        invoice = db.session.get(Invoice, invoice_id)
        assert invoice.is_deleted is True
        assert invoice.deleted_at is not None


class TestRestore:
    def test_restore_symmetry(self, engine, populated_office, admin_user):
        office_id, d1, d2 = populated_office
        before = db.session.get(Office, office_id).to_dict()

        assert engine.soft_delete("office", office_id, admin_user.id).ok
        result = engine.restore("office", office_id)

        assert result.ok
        assert result.value["cascaded"] == 2
        after = db.session.get(Office, office_id).to_dict()
        for key in ("name", "npi_id", "state", "town", "address", "is_deleted", "deleted_at"):
            assert after[key] == before[key]
        assert _count(Device, office_id=office_id, is_deleted=False) == 2

    def test_restore_also_revives_independently_deleted_devices(self, engine, make_office, make_device, admin_user):
        office = make_office()
        office_id = office.id
        make_device(office)
        lone = make_device(office)
        lone_id = lone.id
        assert engine.soft_delete("device", lone_id, admin_user.id).ok
        assert engine.soft_delete("office", office_id, admin_user.id).value["cascaded"] == 1

        result = engine.restore("office", office_id)

        assert result.value["cascaded"] == 2
        assert db.session.get(Device, lone_id).is_deleted is False

    def test_restore_live_row_is_not_found(self, engine, make_office):
        office_id = make_office().id

        result = engine.restore("office", office_id)

        assert result.error.kind == LifecycleErrorKind.NOT_FOUND
        assert result.error.message == "Office not found or not deleted"

    def test_restore_user_reactivates(self, engine, make_user, admin_user):
        user_id = make_user("dana").id
        assert engine.soft_delete("user", user_id, admin_user.id).ok
        assert db.session.get(User, user_id).is_active is False

        assert engine.restore("user", user_id).ok

        assert db.session.get(User, user_id).is_active is True


# =============================================================================
# PERMANENT DELETE
# =============================================================================


class TestPermanentDelete:
    def test_cascade_completeness(self, engine, populated_office, admin_user):
        office_id, d1, d2 = populated_office
        invoice_id = db.session.query(Invoice.id).filter_by(office_id=office_id).first()[0]
        db.session.add(PaymentIntent(
            external_intent_id="pi_test_1",
            invoice_id=invoice_id,
            office_id=office_id,
            amount_cents=5000,
            currency="usd",
            status="succeeded",
        ))
        db.session.commit()

        result = engine.permanent_delete("office", office_id, admin_user.id)

        assert result.ok
        assert result.value == {"id": office_id, "display_name": "Bright Smiles"}
        assert _count(Office, id=office_id) == 0
        assert _count(Device, office_id=office_id) == 0
        assert _count(Invoice, office_id=office_id) == 0
        assert _count(PaymentIntent, office_id=office_id) == 0
        assert db.session.query(UsageRecord).filter(UsageRecord.device_id.in_([d1, d2])).count() == 0

    def test_second_permanent_delete_is_not_found(self, engine, make_office, admin_user):
        office_id = make_office().id

        assert engine.permanent_delete("office", office_id, admin_user.id).ok
        result = engine.permanent_delete("office", office_id, admin_user.id)

        assert result.error.kind == LifecycleErrorKind.NOT_FOUND
        assert _count(Office, id=office_id) == 0

    def test_permanent_delete_from_soft_deleted(self, engine, make_office, make_device, admin_user):
        office = make_office()
        office_id = office.id
        make_device(office)
        assert engine.soft_delete("office", office_id, admin_user.id).ok

        assert engine.permanent_delete("office", office_id, admin_user.id).ok
        assert _count(Device, office_id=office_id) == 0

    def test_device_permanent_delete_removes_usage(self, engine, make_office, make_device, make_usage, admin_user):
        device = make_device(make_office())
        device_id = device.id
        make_usage(device)
        make_usage(device, button_number=3)

        result = engine.permanent_delete("device", device_id, admin_user.id)

        assert result.value["display_name"] == "LUNE-0001"
        assert _count(UsageRecord, device_id=device_id) == 0
        assert _count(Device, id=device_id) == 0

    def test_failing_device_step_rolls_back_everything(self, db_session, populated_office, admin_user):
        office_id, _, _ = populated_office

        def _fail(session, entity_id):
            raise OperationalError("DELETE FROM lune_machines", {}, Exception("forced failure"))

        failing_office = replace(
            OFFICE_DESCRIPTOR,
            permanent_delete_steps=(OFFICE_USAGE_STEP, OFFICE_INVOICES_STEP, DeleteStep("devices", _fail)),
        )
        descriptors = [failing_office] + [d for d in DEFAULT_DESCRIPTORS if d.entity_type != "office"]
        engine = LifecycleEngine(db_session, descriptors=descriptors)
        before = _snapshot()

        result = engine.permanent_delete("office", office_id, admin_user.id)

        assert result.error.kind == LifecycleErrorKind.DEPENDENCY_FAILURE
        assert result.error.http_status == 500
        db_session.expire_all()
        assert _snapshot() == before

    def test_constraint_violation_is_reported(self, db_session, make_office, make_device, make_usage, admin_user):
        device = make_device(make_office())
        device_id = device.id
        make_usage(device)
        # Without its usage step the device row is still referenced
        engine = LifecycleEngine(
            db_session,
            descriptors=[replace(DEVICE_DESCRIPTOR, permanent_delete_steps=())],
        )

        result = engine.permanent_delete("device", device_id, admin_user.id)

        assert result.error.kind == LifecycleErrorKind.CONSTRAINT_VIOLATION
        assert _count(Device, id=device_id) == 1
        assert _count(UsageRecord, device_id=device_id) == 1

    def test_invoice_permanent_delete_removes_payment_intents(self, engine, make_office, make_invoice, admin_user):
        office = make_office()
        invoice = make_invoice(office)
        invoice_id = invoice.id
        db.session.add(PaymentIntent(
            external_intent_id="pi_test_2",
            invoice_id=invoice_id,
            office_id=office.id,
            amount_cents=10000,
            currency="usd",
            status="mock_created",
        ))
        db.session.commit()

        assert engine.permanent_delete("invoice", invoice_id, admin_user.id).ok
        assert _count(PaymentIntent, invoice_id=invoice_id) == 0


# =============================================================================
# USERS
# =============================================================================


class TestUserProtection:
    def test_admin_cannot_soft_delete_self(self, engine, admin_user, make_user):
        make_user("second_admin", role=ROLE_ADMIN)

        result = engine.soft_delete("user", admin_user.id, admin_user.id)

        assert result.error.kind == LifecycleErrorKind.SELF_MODIFICATION_FORBIDDEN
        assert db.session.get(User, admin_user.id).is_active is True

    def test_admin_cannot_permanently_delete_self(self, engine, admin_user, make_user):
        make_user("second_admin", role=ROLE_ADMIN)

        result = engine.permanent_delete("user", admin_user.id, admin_user.id)

        assert result.error.kind == LifecycleErrorKind.SELF_MODIFICATION_FORBIDDEN
        assert _count(User, id=admin_user.id) == 1

    def test_admin_users_cannot_be_purged(self, engine, admin_user, make_user):
        other_admin_id = make_user("second_admin", role=ROLE_ADMIN).id

        result = engine.permanent_delete("user", other_admin_id, admin_user.id)

        assert result.error.kind == LifecycleErrorKind.INVALID_STATE_TRANSITION
        assert result.error.message == "Cannot permanently delete admin users"

    def test_soft_delete_user_revokes_sessions(self, engine, make_user, admin_user):
        user_id = make_user("erin").id
        session_service.create_session(user_id)
        session_service.create_session(user_id)

        assert engine.soft_delete("user", user_id, admin_user.id).ok

        assert _count(SessionToken, user_id=user_id, is_revoked=False) == 0
        assert _count(SessionToken, user_id=user_id, is_revoked=True) == 2

    def test_permanent_delete_user_detaches_payments(self, engine, make_user, make_office, make_invoice, admin_user):
        user_id = make_user("frank").id
        office = make_office()
        invoice = make_invoice(office)
        session_service.create_session(user_id)
        db.session.add(PaymentIntent(
            external_intent_id="pi_test_3",
            invoice_id=invoice.id,
            office_id=office.id,
            user_id=user_id,
            amount_cents=10000,
            currency="usd",
            status="succeeded",
        ))
        db.session.commit()

        result = engine.permanent_delete("user", user_id, admin_user.id)

        assert result.value == {"id": user_id, "display_name": "frank"}
        assert _count(User, id=user_id) == 0
        assert _count(SessionToken, user_id=user_id) == 0
        intent = db.session.query(PaymentIntent).filter_by(external_intent_id="pi_test_3").one()
        assert intent.user_id is None
