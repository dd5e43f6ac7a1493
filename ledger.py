"""Fee ledger: what each student owes and how payments settle it."""

import calendar
import logging
import math
from datetime import date

from errors import ConflictError, ValidationError
from models import DUE, PARTIAL, PAID, OVERDUE

logger = logging.getLogger(__name__)

TRANSPORTATION = 'Transportation'
MONTHLY = 'Monthly'
UNKNOWN = 'Unknown'


def billing_period(frequency, on):
    """Period label for a due raised on ``on``: "May 2025" or "2025"."""
    if frequency == MONTHLY:
        return f"{calendar.month_name[on.month]} {on.year}"
    return str(on.year)


def project_due_date(due_day, on):
    if not due_day:
        return on
    last_day = calendar.monthrange(on.year, on.month)[1]
    return on.replace(day=min(due_day, last_day))


def next_status(amount, amount_paid):
    if amount_paid >= amount:
        return PAID
    if amount_paid > 0:
        return PARTIAL
    return DUE


def whole_cents(amount):
    """True for a finite amount with no fraction of a cent."""
    return math.isfinite(amount) and abs(round(amount, 2) - amount) < 1e-9


def outstanding(due):
    return max(round(due.amount - (due.amount_paid or 0), 2), 0)


class FeeLedger:
    def __init__(self, store, today=None):
        self.store = store
        self._today = today or date.today

    def today(self):
        return self._today()

    def student_dues(self, student_id):
        return self.store.fee_dues.list(student_id=student_id)

    def generate_dues(self, student, on=None):
        """Raise one due per fee type billed to the student's grade.

        A due already raised for the same fee type and period is left alone,
        so calling this twice in a period creates nothing the second time.
        """
        on = on or self.today()
        created = []
        billed = set()
        for item in self.store.fee_structure.list(grade=student.grade):
            if item.fee_type in billed:
                continue
            billed.add(item.fee_type)
            due = self._raise_due(student, item.fee_type, item.amount, item.frequency,
                                  project_due_date(item.due_day, on), on)
            if due is not None:
                created.append(due)

        if TRANSPORTATION not in billed:
            route = self.store.routes.get(student.transportation_route_id)
            if route is not None and route.is_active:
                due = self._raise_due(student, TRANSPORTATION, route.fare, MONTHLY, on, on)
                if due is not None:
                    created.append(due)

        logger.info(f"Generated {len(created)} fee dues for student {student.admission_number}")
        return created

    def _raise_due(self, student, fee_type, amount, frequency, due_date, on):
        period = billing_period(frequency, on)
        if self.store.fee_dues.exists(student_id=student.id, fee_type=fee_type, period=period):
            logger.debug(f"{fee_type} due for {period} already exists for student {student.id}")
            return None
        return self.store.fee_dues.create(
            student_id=student.id,
            fee_type=fee_type,
            description=f"{fee_type} Fee ({period})",
            period=period,
            amount=amount,
            amount_paid=0.0,
            status=DUE,
            due_date=due_date,
        )

    def apply_payment(self, fee_due_id, amount):
        due = self.store.fee_dues.get(fee_due_id)
        if due is None:
            raise ConflictError(f"Fee due {fee_due_id} no longer exists", {'fee_due_id': fee_due_id})
        if not whole_cents(amount):
            raise ValidationError(errors=[{'field': 'amount',
                                           'message': 'Amount must be a finite value in whole cents'}])
        if amount < 0:
            raise ValidationError(errors=[{'field': 'amount', 'message': 'Amount must not be negative'}])
        if amount == 0:
            return due
        if round(amount, 2) > outstanding(due):
            raise ValidationError(errors=[{
                'field': 'amount',
                'message': f"Amount {amount} exceeds the outstanding balance {outstanding(due)}",
            }])

        amount_paid = round(due.amount_paid + amount, 2)
        status = next_status(due.amount, amount_paid)
        logger.info(f"Applied {amount} to fee due {due.id}: {due.status} -> {status}")
        return self.store.fee_dues.update(due.id, amount_paid=amount_paid, status=status)

    def mark_overdue(self, today=None):
        today = today or self.today()
        changed = []
        for status in (DUE, PARTIAL):
            for due in self.store.fee_dues.list(status=status):
                if due.due_date < today:
                    changed.append(self.store.fee_dues.update(due.id, status=OVERDUE))
        logger.info(f"Overdue sweep on {today.isoformat()} marked {len(changed)} fee dues")
        return changed

    def defaulters(self, include_partial=False):
        statuses = [DUE, OVERDUE]
        if include_partial:
            statuses.append(PARTIAL)

        dues = []
        for status in statuses:
            dues.extend(self.store.fee_dues.list(status=status))
        dues.sort(key=lambda due: due.id)

        rows = []
        for due in dues:
            student = self.store.students.get(due.student_id)
            row = due.to_dict()
            row.update(
                student_name=student.student_name if student else UNKNOWN,
                grade=student.grade if student else UNKNOWN,
                admission_number=student.admission_number if student else UNKNOWN,
                balance=outstanding(due),
            )
            rows.append(row)
        return rows
