# Overview: Read-only financial rollups per office and across all offices.

"""
Aggregation Reporter

Derives office payment status from non-deleted invoices. Nothing computed
here is ever persisted. All sums are exact integer cents.

STATUS RULES (evaluated in order):
1. no non-deleted invoices                       -> no_invoices
2. paid_cents == total_cents                     -> paid
3. paid_cents > 0                                -> partial
4. any unpaid invoice generated > N days ago     -> overdue
5. otherwise                                     -> pending
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Sequence

from flask import current_app
from sqlalchemy import func, select

from ..models import Device, Invoice, Office, INVOICE_PAID
from lunebilling.time_utils import utcnow


STATUS_OVERDUE = "overdue"
STATUS_PENDING = "pending"
STATUS_PARTIAL = "partial"
STATUS_NO_INVOICES = "no_invoices"
STATUS_PAID = "paid"

# Offices needing attention sort first
STATUS_PRIORITY = {
    STATUS_OVERDUE: 0,
    STATUS_PENDING: 1,
    STATUS_PARTIAL: 2,
    STATUS_NO_INVOICES: 3,
    STATUS_PAID: 4,
}

DEFAULT_OVERDUE_AFTER_DAYS = 30


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


@dataclass(frozen=True)
class InvoiceFigures:
    total_amount_cents: int
    status: str
    generated_at: datetime | None


def derive_office_financials(
    invoices: Sequence[InvoiceFigures],
    *,
    now: datetime,
    overdue_after: timedelta,
) -> dict:
    total = sum(inv.total_amount_cents for inv in invoices)
    paid = sum(inv.total_amount_cents for inv in invoices if inv.status == INVOICE_PAID)

    if not invoices:
        status = STATUS_NO_INVOICES
    elif paid == total:
        status = STATUS_PAID
    elif paid > 0:
        status = STATUS_PARTIAL
    elif any(
        inv.status != INVOICE_PAID
        and inv.generated_at is not None
        and now - inv.generated_at > overdue_after
        for inv in invoices
    ):
        status = STATUS_OVERDUE
    else:
        status = STATUS_PENDING

    return {
        "total_amount_cents": total,
        "paid_amount_cents": paid,
        "unpaid_amount_cents": total - paid,
        "status": status,
        "invoice_count": len(invoices),
    }


class AggregationReporter:
    """
    Pure reads over the current store state.

    The session and the clock are injected at startup; tests pass a fixed
    clock to pin "now".
    """

    def __init__(
        self,
        session: Any,
        *,
        clock: Callable[[], datetime] = utcnow,
        overdue_after_days: int = DEFAULT_OVERDUE_AFTER_DAYS,
    ):
        self.session = session
        self.clock = clock
        self.overdue_after = timedelta(days=overdue_after_days)

    def _invoice_figures(self, office_ids: Iterable[int]) -> dict[int, list[InvoiceFigures]]:
        office_ids = list(office_ids)
        grouped: dict[int, list[InvoiceFigures]] = {oid: [] for oid in office_ids}
        if not office_ids:
            return grouped

        rows = self.session.execute(
            select(Invoice.office_id, Invoice.total_amount_cents, Invoice.status, Invoice.generated_at)
            .where(Invoice.office_id.in_(office_ids), Invoice.is_deleted.is_(False))
            .order_by(Invoice.id.asc())
        ).all()
        for office_id, amount, status, generated_at in rows:
            grouped[office_id].append(InvoiceFigures(amount, status, generated_at))
        return grouped

    def compute_office_status(self, office_id: int) -> dict:
        exists = self.session.execute(
            select(Office.id).where(Office.id == office_id, Office.is_deleted.is_(False))
        ).first()
        if exists is None:
            raise ReportError("Dental office not found")

        figures = self._invoice_figures([office_id])[office_id]
        result = derive_office_financials(figures, now=self.clock(), overdue_after=self.overdue_after)
        result["office_id"] = office_id
        return result

    @staticmethod
    def sort_by_status(rows: list[dict]) -> list[dict]:
        """Stable sort on the "status" key by attention priority."""
        return sorted(rows, key=lambda row: STATUS_PRIORITY.get(row["status"], len(STATUS_PRIORITY)))

    def compute_global_totals(self, office_ids: Iterable[int]) -> dict:
        now = self.clock()
        total_owed = 0
        total_paid = 0
        for figures in self._invoice_figures(office_ids).values():
            fin = derive_office_financials(figures, now=now, overdue_after=self.overdue_after)
            total_owed += fin["unpaid_amount_cents"]
            total_paid += fin["paid_amount_cents"]
        return {"total_owed_cents": total_owed, "total_paid_cents": total_paid}

    def dashboard_summary(self) -> dict:
        offices = self.session.execute(
            select(Office).where(Office.is_deleted.is_(False)).order_by(Office.name.asc())
        ).scalars().all()
        office_ids = [o.id for o in offices]

        device_counts = dict(
            self.session.execute(
                select(Device.office_id, func.count(Device.id))
                .where(Device.is_deleted.is_(False), Device.office_id.in_(office_ids))
                .group_by(Device.office_id)
            ).all()
        ) if office_ids else {}

        now = self.clock()
        figures_by_office = self._invoice_figures(office_ids)

        rows = []
        total_owed = 0
        total_paid = 0
        invoice_count = 0
        for office in offices:
            fin = derive_office_financials(
                figures_by_office[office.id], now=now, overdue_after=self.overdue_after
            )
            total_owed += fin["unpaid_amount_cents"]
            total_paid += fin["paid_amount_cents"]
            invoice_count += fin["invoice_count"]
            rows.append({
                "office_id": office.id,
                "name": office.name,
                "npi_id": office.npi_id,
                "state": office.state,
                "town": office.town,
                "device_count": device_counts.get(office.id, 0),
                **fin,
            })

        return {
            "offices": self.sort_by_status(rows),
            "totals": {"total_owed_cents": total_owed, "total_paid_cents": total_paid},
            "counts": {
                "offices": len(offices),
                "devices": sum(device_counts.values()),
                "invoices": invoice_count,
            },
        }


def get_reporter() -> AggregationReporter:
    """Reporter wired in create_app."""
    return current_app.extensions["aggregation_reporter"]
