from .auth import User, SessionToken, LoginAttempt, ROLE_USER, ROLE_ADMIN, VALID_ROLES
from .offices import Office, Device
from .usage import UsageRecord
from .billing import (
    Invoice,
    PaymentIntent,
    INVOICE_PAID,
    INVOICE_UNPAID,
    VALID_INVOICE_STATUSES,
    KIND_PAYMENT_INTENT,
    KIND_CHECKOUT_SESSION,
)

__all__ = [
    'User', 'SessionToken', 'LoginAttempt', 'ROLE_USER', 'ROLE_ADMIN', 'VALID_ROLES',
    'Office', 'Device',
    'UsageRecord',
    'Invoice', 'PaymentIntent', 'INVOICE_PAID', 'INVOICE_UNPAID', 'VALID_INVOICE_STATUSES',
    'KIND_PAYMENT_INTENT', 'KIND_CHECKOUT_SESSION',
]
