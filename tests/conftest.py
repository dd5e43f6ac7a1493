from datetime import date

import pytest

from app import create_app
from ledger import FeeLedger
from models import (
    db, Student, FeeStructureItem, FeeDue, Receipt, ReceiptItem,
    TransportationRoute, User, SchoolSettings,
)
from receipts import ReceiptIssuer

TODAY = date(2025, 5, 10)


class MemoryRepository:
    """Dict-backed stand-in for repository.Repository."""

    def __init__(self, model):
        self.model = model
        self.records = {}
        self.next_id = 1

    def _apply_defaults(self, record):
        for column in self.model.__table__.columns:
            if getattr(record, column.key) is None and column.default is not None:
                arg = column.default.arg
                setattr(record, column.key, arg(None) if callable(arg) else arg)

    def create(self, **fields):
        record = self.model(**fields)
        record.id = self.next_id
        self.next_id += 1
        self._apply_defaults(record)
        self.records[record.id] = record
        return record

    def get(self, record_id):
        return self.records.get(record_id)

    def list(self, **filters):
        return [
            record for _, record in sorted(self.records.items())
            if all(getattr(record, name) == value for name, value in filters.items())
        ]

    def first(self, **filters):
        found = self.list(**filters)
        return found[0] if found else None

    def count(self, **filters):
        return len(self.list(**filters))

    def exists(self, **filters):
        return bool(self.list(**filters))

    def update(self, record_id, **changes):
        record = self.records.get(record_id)
        if record is None:
            return None
        for name, value in changes.items():
            setattr(record, name, value)
        return record

    def delete(self, record_id):
        return self.records.pop(record_id, None) is not None


class MemorySettings:
    def __init__(self):
        self.repo = MemoryRepository(SchoolSettings)

    def get(self):
        return self.repo.get(1) or self.repo.create()

    def update(self, **changes):
        return self.repo.update(self.get().id, **changes)


class MemoryStore:
    def __init__(self):
        self.students = MemoryRepository(Student)
        self.fee_structure = MemoryRepository(FeeStructureItem)
        self.fee_dues = MemoryRepository(FeeDue)
        self.receipts = MemoryRepository(Receipt)
        self.receipt_items = MemoryRepository(ReceiptItem)
        self.routes = MemoryRepository(TransportationRoute)
        self.users = MemoryRepository(User)
        self.settings = MemorySettings()
        self.commits = 0
        self.rollbacks = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def ledger(store):
    return FeeLedger(store, today=lambda: TODAY)


@pytest.fixture
def issuer(store, ledger):
    return ReceiptIssuer(store, ledger)


@pytest.fixture
def make_student(store):
    def make(admission_number='A001', grade='5', section='A', **extra):
        fields = dict(
            admission_number=admission_number,
            student_name=f"Student {admission_number}",
            grade=grade,
            section=section,
            roll_number=1,
            parent_name='Parent',
            contact_number='9876543210',
            admission_date=TODAY,
        )
        fields.update(extra)
        return store.students.create(**fields)
    return make


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'LOGIN_DISABLED': True,
        'SECRET_KEY': 'test',
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()
