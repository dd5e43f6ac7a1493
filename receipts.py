"""Receipt issuance.

Turns a selection of open fee dues into one receipt plus its items and settles
the dues through the ledger. Issuance assumes a single writer: the sequence is
derived from the receipt count, and the unique receipt number column rejects
a racing duplicate.
"""

import logging
from collections import namedtuple
from datetime import date

from errors import ConflictError, NotFound, ValidationError
from ledger import FeeLedger, outstanding, whole_cents
from models import PAYMENT_METHODS

logger = logging.getLogger(__name__)

RECEIPT_PREFIX = 'REC'

PaymentLine = namedtuple('PaymentLine', ['fee_due_id', 'amount'])
IssuedReceipt = namedtuple('IssuedReceipt', ['receipt', 'items'])


def format_receipt_number(grade, section, sequence):
    return f"{RECEIPT_PREFIX}{grade or ''}{section or ''}{sequence:04d}"


class ReceiptIssuer:
    def __init__(self, store, ledger=None):
        self.store = store
        self.ledger = ledger or FeeLedger(store)

    def next_receipt_number(self, grade='', section=''):
        sequence = self.store.receipts.count() + 1
        number = format_receipt_number(grade, section, sequence)
        while self.store.receipts.exists(receipt_number=number):
            sequence += 1
            number = format_receipt_number(grade, section, sequence)
        return number

    def issue(self, student_id, lines, payment_method, receipt_date=None,
              reference=None, remarks=None, receipt_number=None):
        """Issue a receipt for ``lines`` (objects with ``fee_due_id`` and ``amount``).

        Nothing is written unless every line is valid; the store is committed
        once at the end and rolled back on any failure.
        """
        student = self.store.students.get(student_id)
        if student is None:
            raise NotFound(f"Student {student_id} not found")
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(errors=[{'field': 'payment_method',
                                           'message': f"Unknown payment method {payment_method!r}"}])
        if not lines:
            raise ValidationError(errors=[{'field': 'items',
                                           'message': 'Select at least one fee due'}])
        if receipt_number and self.store.receipts.exists(receipt_number=receipt_number):
            raise ConflictError(f"Receipt number {receipt_number} already exists")

        dues = self._check_lines(student, lines)
        receipt_number = receipt_number or self.next_receipt_number(student.grade, student.section)
        total = round(sum(line.amount for line in lines), 2)

        try:
            receipt = self.store.receipts.create(
                receipt_number=receipt_number,
                student_id=student.id,
                receipt_date=receipt_date or date.today(),
                total_amount=total,
                payment_method=payment_method,
                payment_reference=reference,
                remarks=remarks,
                status='Completed',
            )
            items = []
            for line, due in zip(lines, dues):
                items.append(self.store.receipt_items.create(
                    receipt_id=receipt.id,
                    fee_due_id=due.id,
                    fee_type=due.fee_type,
                    description=due.description,
                    period=due.period,
                    amount=line.amount,
                ))
                self.ledger.apply_payment(due.id, line.amount)
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise

        logger.info(f"Issued receipt {receipt.receipt_number} for {student.admission_number}: "
                    f"{total} across {len(items)} items")
        return IssuedReceipt(receipt, items)

    def _check_lines(self, student, lines):
        dues = []
        errors = []
        applied = {}
        for index, line in enumerate(lines):
            due = self.store.fee_dues.get(line.fee_due_id)
            if due is None:
                raise ConflictError(f"Fee due {line.fee_due_id} no longer exists",
                                    {'fee_due_id': line.fee_due_id})
            dues.append(due)
            field = f"items[{index}]"
            if due.student_id != student.id:
                errors.append({'field': f"{field}.fee_due_id",
                               'message': f"Fee due {due.id} does not belong to this student"})
                continue
            if not whole_cents(line.amount):
                errors.append({'field': f"{field}.amount",
                               'message': 'Amount must be a finite value in whole cents'})
                continue
            if line.amount <= 0:
                errors.append({'field': f"{field}.amount", 'message': 'Amount must be greater than 0'})
                continue
            applied[due.id] = round(applied.get(due.id, 0) + line.amount, 2)
            if applied[due.id] > outstanding(due):
                errors.append({'field': f"{field}.amount",
                               'message': f"Amount exceeds the outstanding balance {outstanding(due)}"})
        if errors:
            raise ValidationError(errors=errors)
        return dues
