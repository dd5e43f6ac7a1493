"""Record store over the SQLAlchemy session.

Services receive a ``Store`` instead of touching ``db.session`` directly, so a
store built on another backend (the in-memory one used in tests) can be
swapped in without changing them.
"""

from models import (
    db, Student, FeeStructureItem, FeeDue, Receipt, ReceiptItem,
    TransportationRoute, User, SchoolSettings,
)

SETTINGS_ID = 1


class Repository:
    def __init__(self, session, model):
        self.session = session
        self.model = model

    def create(self, **fields):
        record = self.model(**fields)
        self.session.add(record)
        self.session.flush()
        return record

    def get(self, record_id):
        if record_id is None:
            return None
        return self.session.get(self.model, record_id)

    def list(self, **filters):
        return self.session.query(self.model).filter_by(**filters).order_by(self.model.id).all()

    def first(self, **filters):
        return self.session.query(self.model).filter_by(**filters).order_by(self.model.id).first()

    def count(self, **filters):
        return self.session.query(self.model).filter_by(**filters).count()

    def exists(self, **filters):
        return self.first(**filters) is not None

    def update(self, record_id, **changes):
        record = self.get(record_id)
        if record is None:
            return None
        for name, value in changes.items():
            setattr(record, name, value)
        self.session.flush()
        return record

    def delete(self, record_id):
        record = self.get(record_id)
        if record is None:
            return False
        self.session.delete(record)
        self.session.flush()
        return True


class SettingsRepository:
    def __init__(self, session):
        self.session = session

    def get(self):
        settings = self.session.get(SchoolSettings, SETTINGS_ID)
        if settings is None:
            settings = SchoolSettings(id=SETTINGS_ID)
            self.session.add(settings)
            self.session.flush()
        return settings

    def update(self, **changes):
        settings = self.get()
        for name, value in changes.items():
            setattr(settings, name, value)
        self.session.flush()
        return settings


class Store:
    """One repository per entity type, sharing a single unit of work."""

    def __init__(self, session=None):
        self.session = session if session is not None else db.session
        self.students = Repository(self.session, Student)
        self.fee_structure = Repository(self.session, FeeStructureItem)
        self.fee_dues = Repository(self.session, FeeDue)
        self.receipts = Repository(self.session, Receipt)
        self.receipt_items = Repository(self.session, ReceiptItem)
        self.routes = Repository(self.session, TransportationRoute)
        self.users = Repository(self.session, User)
        self.settings = SettingsRepository(self.session)

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()
