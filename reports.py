"""Read-only summaries over the ledger: dashboard figures and collection lists."""

from datetime import date, datetime

from ledger import UNKNOWN
from models import DUE, PARTIAL, OVERDUE


def dashboard_stats(store, today=None):
    today = today or date.today()
    receipts = store.receipts.list()
    pending = sum(store.fee_dues.count(status=status) for status in (DUE, PARTIAL, OVERDUE))
    return {
        'today_collection': round(sum(r.total_amount for r in receipts if r.receipt_date == today), 2),
        'receipts_generated': len(receipts),
        'pending_payments': pending,
        'total_students': store.students.count(),
    }


def _with_student(store, receipt):
    student = store.students.get(receipt.student_id)
    row = receipt.to_dict()
    row.update(
        student_name=student.student_name if student else UNKNOWN,
        grade=student.grade if student else UNKNOWN,
        section=student.section if student else UNKNOWN,
    )
    return row


def recent_receipts(store, limit=10):
    receipts = sorted(store.receipts.list(),
                      key=lambda r: (r.created_at or datetime.min, r.id), reverse=True)
    if limit is not None:
        receipts = receipts[:limit]
    return [_with_student(store, receipt) for receipt in receipts]


def collection_rows(store, start=None, end=None):
    """Receipts dated within ``start``..``end`` inclusive, oldest first."""
    start = start or date.min
    end = end or date.today()
    receipts = [r for r in store.receipts.list() if start <= r.receipt_date <= end]
    receipts.sort(key=lambda r: (r.receipt_date, r.id))
    return [_with_student(store, receipt) for receipt in receipts]
