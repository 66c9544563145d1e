# Overview: Generic soft-delete / restore / permanent-delete engine for every deletable entity.

"""
Entity Lifecycle Engine

================================================================================
PURPOSE: One state machine for offices, devices, invoices and users
================================================================================

STATE MACHINE:
    ACTIVE <-> SOFT_DELETED -> GONE
    ACTIVE -> GONE

    ACTIVE:       flag column holds its "live" value
    SOFT_DELETED: flag column holds the descriptor's deleted value; the row
                  and everything it owns are kept and can be restored
    GONE:         the row and its owned children are physically removed

Each entity type is described by an EntityDescriptor: which column carries
the deleted flag (users use is_active, i.e. inverted polarity), whether a
deleted_at timestamp exists, which children follow the flag (cascades), and
the ordered steps that clear dependent rows before a permanent delete.

RULES:
1. Every operation is a single transaction. Any failure rolls back every step.
2. Soft delete of an already soft-deleted row is an InvalidStateTransition
   (400), as the billing error taxonomy lists double delete. It is not
   reported as NotFound.
3. Restore of a missing or live row is NotFound.
4. Permanent delete works from ACTIVE or SOFT_DELETED; a second call is NotFound.
5. Nobody can delete their own user account; admins can never be purged.

Results are returned, not raised: every call yields a LifecycleResult holding
either a value or a LifecycleError whose kind maps onto an HTTP status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from flask import current_app
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..models import (
    Device,
    Invoice,
    Office,
    PaymentIntent,
    SessionToken,
    UsageRecord,
    User,
    ROLE_ADMIN,
)
from lunebilling.time_utils import utcnow


logger = logging.getLogger(__name__)


# =============================================================================
# RESULT TYPES
# =============================================================================

class LifecycleErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    INVALID_STATE_TRANSITION = "InvalidStateTransition"
    VALIDATION_ERROR = "ValidationError"
    SELF_MODIFICATION_FORBIDDEN = "SelfModificationForbidden"
    CONSTRAINT_VIOLATION = "ConstraintViolation"
    DEPENDENCY_FAILURE = "DependencyFailure"


HTTP_STATUS_BY_KIND = {
    LifecycleErrorKind.NOT_FOUND: 404,
    LifecycleErrorKind.INVALID_STATE_TRANSITION: 400,
    LifecycleErrorKind.VALIDATION_ERROR: 400,
    LifecycleErrorKind.SELF_MODIFICATION_FORBIDDEN: 400,
    LifecycleErrorKind.CONSTRAINT_VIOLATION: 400,
    LifecycleErrorKind.DEPENDENCY_FAILURE: 500,
}


class LifecycleError(Exception):
    """
    Domain error carried inside a LifecycleResult.

    Raised internally to abort a transaction; callers only ever see it
    as LifecycleResult.error.
    """

    def __init__(self, kind: LifecycleErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]


@dataclass(frozen=True)
class LifecycleResult:
    value: dict | None = None
    error: LifecycleError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: dict) -> "LifecycleResult":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: LifecycleErrorKind, message: str) -> "LifecycleResult":
        return cls(error=LifecycleError(kind, message))


# =============================================================================
# DESCRIPTORS
# =============================================================================

StepFn = Callable[[Any, int], None]


@dataclass(frozen=True)
class DeleteStep:
    """A named unit of work run against (session, entity_id) inside the transaction."""
    name: str
    run: StepFn


@dataclass(frozen=True)
class CascadeRule:
    """Child rows whose deleted flag follows the parent's soft delete / restore."""
    model: type
    parent_column: str
    flag_column: str = "is_deleted"
    deleted_value: bool = True
    deleted_at_column: str | None = None


@dataclass(frozen=True)
class EntityDescriptor:
    entity_type: str
    model: type
    display_column: str
    flag_column: str = "is_deleted"
    deleted_value: bool = True
    deleted_at_column: str | None = None
    cascade_children: tuple[CascadeRule, ...] = ()
    permanent_delete_steps: tuple[DeleteStep, ...] = ()
    after_soft_delete: tuple[DeleteStep, ...] = ()
    # Entities an actor may not delete when the id is their own (users)
    forbid_self: bool = False
    # Returns a reason string when the row must never be purged
    purge_guard: Callable[[Any], str | None] | None = None


# --- permanent delete steps -------------------------------------------------

def _delete_office_usage(session, office_id: int) -> None:
    device_ids = select(Device.id).where(Device.office_id == office_id)
    session.execute(
        delete(UsageRecord)
        .where(UsageRecord.device_id.in_(device_ids))
        .execution_options(synchronize_session=False)
    )


def _delete_office_invoices(session, office_id: int) -> None:
    invoice_ids = select(Invoice.id).where(Invoice.office_id == office_id)
    session.execute(
        delete(PaymentIntent)
        .where(or_(PaymentIntent.office_id == office_id, PaymentIntent.invoice_id.in_(invoice_ids)))
        .execution_options(synchronize_session=False)
    )
    session.execute(
        delete(Invoice)
        .where(Invoice.office_id == office_id)
        .execution_options(synchronize_session=False)
    )


def _delete_office_devices(session, office_id: int) -> None:
    session.execute(
        delete(Device)
        .where(Device.office_id == office_id)
        .execution_options(synchronize_session=False)
    )


def _delete_device_usage(session, device_id: int) -> None:
    session.execute(
        delete(UsageRecord)
        .where(UsageRecord.device_id == device_id)
        .execution_options(synchronize_session=False)
    )


def _delete_invoice_payment_intents(session, invoice_id: int) -> None:
    session.execute(
        delete(PaymentIntent)
        .where(PaymentIntent.invoice_id == invoice_id)
        .execution_options(synchronize_session=False)
    )


def _delete_user_sessions(session, user_id: int) -> None:
    session.execute(
        delete(SessionToken)
        .where(SessionToken.user_id == user_id)
        .execution_options(synchronize_session=False)
    )


def _detach_user_payment_intents(session, user_id: int) -> None:
    session.execute(
        update(PaymentIntent)
        .where(PaymentIntent.user_id == user_id)
        .values(user_id=None)
        .execution_options(synchronize_session=False)
    )


def _revoke_user_sessions(session, user_id: int) -> None:
    session.execute(
        update(SessionToken)
        .where(SessionToken.user_id == user_id, SessionToken.is_revoked.is_(False))
        .values(is_revoked=True, revoked_at=utcnow(), revoked_reason="User account deleted")
        .execution_options(synchronize_session=False)
    )


def _admin_guard(user: User) -> str | None:
    if user.role == ROLE_ADMIN:
        return "Cannot permanently delete admin users"
    return None


OFFICE_USAGE_STEP = DeleteStep("usage", _delete_office_usage)
OFFICE_INVOICES_STEP = DeleteStep("invoices", _delete_office_invoices)
OFFICE_DEVICES_STEP = DeleteStep("devices", _delete_office_devices)


OFFICE_DESCRIPTOR = EntityDescriptor(
    entity_type="office",
    model=Office,
    display_column="name",
    deleted_at_column="deleted_at",
    cascade_children=(CascadeRule(model=Device, parent_column="office_id"),),
    permanent_delete_steps=(OFFICE_USAGE_STEP, OFFICE_INVOICES_STEP, OFFICE_DEVICES_STEP),
)

DEVICE_DESCRIPTOR = EntityDescriptor(
    entity_type="device",
    model=Device,
    display_column="serial_number",
    permanent_delete_steps=(DeleteStep("usage", _delete_device_usage),),
)

INVOICE_DESCRIPTOR = EntityDescriptor(
    entity_type="invoice",
    model=Invoice,
    display_column="invoice_number",
    deleted_at_column="deleted_at",
    permanent_delete_steps=(DeleteStep("payment_intents", _delete_invoice_payment_intents),),
)

USER_DESCRIPTOR = EntityDescriptor(
    entity_type="user",
    model=User,
    display_column="username",
    flag_column="is_active",
    deleted_value=False,
    permanent_delete_steps=(
        DeleteStep("sessions", _delete_user_sessions),
        DeleteStep("payment_intents", _detach_user_payment_intents),
    ),
    after_soft_delete=(DeleteStep("sessions", _revoke_user_sessions),),
    forbid_self=True,
    purge_guard=_admin_guard,
)

DEFAULT_DESCRIPTORS = (OFFICE_DESCRIPTOR, DEVICE_DESCRIPTOR, INVOICE_DESCRIPTOR, USER_DESCRIPTOR)


# =============================================================================
# ENGINE
# =============================================================================

@dataclass
class LifecycleEngine:
    """
    Runs lifecycle transitions against a SQLAlchemy session.

    The session (usually db.session) and the descriptor registry are injected
    so tests can substitute failing steps or a fixed clock.
    """
    session: Any
    descriptors: Iterable[EntityDescriptor] = DEFAULT_DESCRIPTORS
    clock: Callable[[], Any] = utcnow
    _registry: dict[str, EntityDescriptor] = field(init=False, repr=False)

    def __post_init__(self):
        self._registry = {d.entity_type: d for d in self.descriptors}

    def descriptor(self, entity_type: str) -> EntityDescriptor | None:
        return self._registry.get(entity_type)

    # --- public operations --------------------------------------------------

    def soft_delete(self, entity_type: str, entity_id: int, acting_user_id: int | None = None) -> LifecycleResult:
        return self._run("soft delete", entity_type, entity_id, lambda d: self._soft_delete(d, entity_id, acting_user_id))

    def restore(self, entity_type: str, entity_id: int) -> LifecycleResult:
        return self._run("restore", entity_type, entity_id, lambda d: self._restore(d, entity_id))

    def permanent_delete(self, entity_type: str, entity_id: int, acting_user_id: int | None = None) -> LifecycleResult:
        return self._run(
            "permanent delete", entity_type, entity_id,
            lambda d: self._permanent_delete(d, entity_id, acting_user_id),
        )

    # --- transaction wrapper ------------------------------------------------

    def _run(self, operation: str, entity_type: str, entity_id: int, body) -> LifecycleResult:
        descriptor = self.descriptor(entity_type)
        if descriptor is None:
            return LifecycleResult.failure(
                LifecycleErrorKind.VALIDATION_ERROR, f"Unknown entity type: {entity_type}"
            )

        try:
            value = body(descriptor)
            self.session.commit()
        except LifecycleError as exc:
            self.session.rollback()
            return LifecycleResult(error=exc)
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning("Constraint violation during %s of %s %s: %s", operation, entity_type, entity_id, exc.orig)
            return LifecycleResult.failure(LifecycleErrorKind.CONSTRAINT_VIOLATION, "Operation violates a data constraint")
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Failed to %s %s %s", operation, entity_type, entity_id)
            return LifecycleResult.failure(LifecycleErrorKind.DEPENDENCY_FAILURE, "Database error")

        return LifecycleResult.success(value)

    # --- transitions --------------------------------------------------------

    def _label(self, d: EntityDescriptor) -> str:
        return d.entity_type.capitalize()

    def _check_self(self, d: EntityDescriptor, entity_id: int, acting_user_id: int | None) -> None:
        if d.forbid_self and acting_user_id is not None and entity_id == acting_user_id:
            raise LifecycleError(
                LifecycleErrorKind.SELF_MODIFICATION_FORBIDDEN, "You cannot delete your own account"
            )

    def _soft_delete(self, d: EntityDescriptor, entity_id: int, acting_user_id: int | None) -> dict:
        self._check_self(d, entity_id, acting_user_id)

        model = d.model
        flag = getattr(model, d.flag_column)
        values = {d.flag_column: d.deleted_value}
        now = self.clock()
        if d.deleted_at_column:
            values[d.deleted_at_column] = now

        result = self.session.execute(
            update(model)
            .where(model.id == entity_id, flag != d.deleted_value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            exists = self.session.execute(select(model.id).where(model.id == entity_id)).first()
            if exists is None:
                raise LifecycleError(LifecycleErrorKind.NOT_FOUND, f"{self._label(d)} not found")
            raise LifecycleError(
                LifecycleErrorKind.INVALID_STATE_TRANSITION, f"{self._label(d)} is already deleted"
            )

        cascaded = 0
        for rule in d.cascade_children:
            cascaded += self._apply_cascade(rule, entity_id, deleting=True, now=now)

        for step in d.after_soft_delete:
            step.run(self.session, entity_id)

        return {"id": entity_id, "entity_type": d.entity_type, "cascaded": cascaded}

    def _restore(self, d: EntityDescriptor, entity_id: int) -> dict:
        model = d.model
        flag = getattr(model, d.flag_column)
        values = {d.flag_column: not d.deleted_value}
        if d.deleted_at_column:
            values[d.deleted_at_column] = None

        result = self.session.execute(
            update(model)
            .where(model.id == entity_id, flag == d.deleted_value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise LifecycleError(
                LifecycleErrorKind.NOT_FOUND, f"{self._label(d)} not found or not deleted"
            )

        # Reverses every deleted child, including ones deleted on their own
        # before the parent was.
        cascaded = 0
        for rule in d.cascade_children:
            cascaded += self._apply_cascade(rule, entity_id, deleting=False, now=None)

        return {"id": entity_id, "entity_type": d.entity_type, "cascaded": cascaded}

    def _permanent_delete(self, d: EntityDescriptor, entity_id: int, acting_user_id: int | None) -> dict:
        model = d.model
        row = self.session.execute(select(model).where(model.id == entity_id)).scalar_one_or_none()
        if row is None:
            raise LifecycleError(LifecycleErrorKind.NOT_FOUND, f"{self._label(d)} not found")

        self._check_self(d, entity_id, acting_user_id)

        if d.purge_guard is not None:
            reason = d.purge_guard(row)
            if reason:
                raise LifecycleError(LifecycleErrorKind.INVALID_STATE_TRANSITION, reason)

        display_name = getattr(row, d.display_column)
        self.session.expunge(row)

        for step in d.permanent_delete_steps:
            step.run(self.session, entity_id)

        self.session.execute(
            delete(model).where(model.id == entity_id).execution_options(synchronize_session=False)
        )

        return {"id": entity_id, "display_name": display_name}

    def _apply_cascade(self, rule: CascadeRule, parent_id: int, *, deleting: bool, now) -> int:
        child = rule.model
        parent_col = getattr(child, rule.parent_column)
        flag = getattr(child, rule.flag_column)

        if deleting:
            criteria = flag != rule.deleted_value
            values = {rule.flag_column: rule.deleted_value}
            if rule.deleted_at_column:
                values[rule.deleted_at_column] = now
        else:
            criteria = flag == rule.deleted_value
            values = {rule.flag_column: not rule.deleted_value}
            if rule.deleted_at_column:
                values[rule.deleted_at_column] = None

        result = self.session.execute(
            update(child)
            .where(parent_col == parent_id, criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


def get_lifecycle_engine() -> LifecycleEngine:
    """Engine wired in create_app."""
    return current_app.extensions["lifecycle_engine"]
