from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime, date

db = SQLAlchemy()

GRADES = ['Nursery', 'LKG', 'UKG', '1', '2', '3', '4', '5', '6', '7', '8', '9', '10']
SECTIONS = ['A', 'B', 'C', 'D']
FEE_TYPES = [
    'Tuition', 'Admission', 'Examination', 'Laboratory', 'Library',
    'Transportation', 'Uniform', 'Sports', 'Annual Day', 'Other',
]
FREQUENCIES = ['Monthly', 'Quarterly', 'Annual', 'One-time']
TRANSPORTATION_FREQUENCY = ['Monthly', 'Quarterly', 'Semi-Annual', 'Annual']
PAYMENT_METHODS = ['Cash', 'Check', 'Online Transfer', 'UPI', 'Credit/Debit Card']

DUE = 'Due'
PARTIAL = 'Partial'
PAID = 'Paid'
OVERDUE = 'Overdue'
DUE_STATUSES = [DUE, PARTIAL, PAID, OVERDUE]


def _iso(value):
    return value.isoformat() if value is not None else None


class TransportationRoute(db.Model):
    __tablename__ = 'transportation_routes'

    id = db.Column(db.Integer, primary_key=True)
    route_name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(255))
    distance = db.Column(db.Float)
    fare = db.Column(db.Float, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'route_name': self.route_name,
            'description': self.description,
            'distance': self.distance,
            'fare': self.fare,
            'is_active': self.is_active,
            'created_at': _iso(self.created_at),
        }


class Student(db.Model):
    __tablename__ = 'students'

    id = db.Column(db.Integer, primary_key=True)
    admission_number = db.Column(db.String(50), unique=True, nullable=False)
    student_name = db.Column(db.String(100), nullable=False)
    grade = db.Column(db.String(20), nullable=False)
    section = db.Column(db.String(5), nullable=False, default='A')
    roll_number = db.Column(db.Integer, nullable=False, default=0)
    parent_name = db.Column(db.String(100), nullable=False)
    contact_number = db.Column(db.String(20), nullable=False)
    email = db.Column(db.String(120))
    fee_category = db.Column(db.String(50), nullable=False, default='Regular')
    transportation_route_id = db.Column(
        db.Integer, db.ForeignKey('transportation_routes.id', name='fk_student_route'))
    pickup_point = db.Column(db.String(100))
    admission_date = db.Column(db.Date, nullable=False, default=date.today)

    def to_dict(self):
        return {
            'id': self.id,
            'admission_number': self.admission_number,
            'student_name': self.student_name,
            'grade': self.grade,
            'section': self.section,
            'roll_number': self.roll_number,
            'parent_name': self.parent_name,
            'contact_number': self.contact_number,
            'email': self.email,
            'fee_category': self.fee_category,
            'transportation_route_id': self.transportation_route_id,
            'pickup_point': self.pickup_point,
            'admission_date': _iso(self.admission_date),
        }


class FeeStructureItem(db.Model):
    __tablename__ = 'fee_structure'

    id = db.Column(db.Integer, primary_key=True)
    grade = db.Column(db.String(20), nullable=False)
    fee_type = db.Column(db.String(50), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    frequency = db.Column(db.String(20), nullable=False)
    due_day = db.Column(db.Integer)

    def to_dict(self):
        return {
            'id': self.id,
            'grade': self.grade,
            'fee_type': self.fee_type,
            'amount': self.amount,
            'frequency': self.frequency,
            'due_day': self.due_day,
        }


class FeeDue(db.Model):
    __tablename__ = 'fee_dues'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', name='fk_due_student'), nullable=False)
    fee_type = db.Column(db.String(50), nullable=False)
    description = db.Column(db.String(200), nullable=False)
    period = db.Column(db.String(30))
    amount = db.Column(db.Float, nullable=False)
    amount_paid = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(db.String(20), nullable=False, default=DUE)
    due_date = db.Column(db.Date, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'student_id': self.student_id,
            'fee_type': self.fee_type,
            'description': self.description,
            'period': self.period,
            'amount': self.amount,
            'amount_paid': self.amount_paid,
            'status': self.status,
            'due_date': _iso(self.due_date),
        }


class Receipt(db.Model):
    __tablename__ = 'receipts'

    id = db.Column(db.Integer, primary_key=True)
    receipt_number = db.Column(db.String(40), unique=True, nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', name='fk_receipt_student'), nullable=False)
    receipt_date = db.Column(db.Date, nullable=False, default=date.today)
    total_amount = db.Column(db.Float, nullable=False)
    payment_method = db.Column(db.String(50), nullable=False)
    payment_reference = db.Column(db.String(100))
    remarks = db.Column(db.String(255))
    status = db.Column(db.String(20), nullable=False, default='Completed')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'receipt_number': self.receipt_number,
            'student_id': self.student_id,
            'receipt_date': _iso(self.receipt_date),
            'total_amount': self.total_amount,
            'payment_method': self.payment_method,
            'payment_reference': self.payment_reference,
            'remarks': self.remarks,
            'status': self.status,
            'created_at': _iso(self.created_at),
        }


class ReceiptItem(db.Model):
    __tablename__ = 'receipt_items'

    id = db.Column(db.Integer, primary_key=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey('receipts.id', name='fk_item_receipt'), nullable=False)
    fee_due_id = db.Column(db.Integer, db.ForeignKey('fee_dues.id', name='fk_item_due'))
    fee_type = db.Column(db.String(50), nullable=False)
    description = db.Column(db.String(200), nullable=False)
    period = db.Column(db.String(30))
    amount = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'receipt_id': self.receipt_id,
            'fee_due_id': self.fee_due_id,
            'fee_type': self.fee_type,
            'description': self.description,
            'period': self.period,
            'amount': self.amount,
        }


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(30), nullable=False, default='Administrator')
    full_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'role': self.role,
            'full_name': self.full_name,
            'email': self.email,
        }


class SchoolSettings(db.Model):
    """Process-wide singleton; always stored as row id 1."""
    __tablename__ = 'school_settings'

    id = db.Column(db.Integer, primary_key=True)
    school_name = db.Column(db.String(200), nullable=False, default='Krishnaveni Talent School Ramannapet')
    address = db.Column(db.String(255), default='Near Old Bus stand, Ramannapet, 508113')
    phone = db.Column(db.String(30), default='+91-7386685333')
    email = db.Column(db.String(120), default='ktsramannapet@gmail.com')
    website = db.Column(db.String(120), default='www.globalexcellence.edu')
    principal_name = db.Column(db.String(100), default='Dr. Rajendra Kumar')
    logo = db.Column(db.String(255))
    receipt_prefix = db.Column(db.String(10), default='GES')
    academic_year = db.Column(db.String(20), default='2025-2026')
    current_term = db.Column(db.String(30), default='Quarter 1')
    enable_email_notifications = db.Column(db.Boolean, default=False)
    enable_sms_notifications = db.Column(db.Boolean, default=False)
    enable_automatic_reminders = db.Column(db.Boolean, default=False)
    reminder_days = db.Column(db.Integer, default=5)
    tax_percentage = db.Column(db.Float, default=0.0)
    receipt_footer_text = db.Column(
        db.String(255), default='Thank you for your payment. This receipt is system generated.')
    receipt_copies = db.Column(db.Integer, default=2)
    theme = db.Column(db.String(10), default='light')

    FIELDS = (
        'school_name', 'address', 'phone', 'email', 'website', 'principal_name', 'logo',
        'receipt_prefix', 'academic_year', 'current_term', 'enable_email_notifications',
        'enable_sms_notifications', 'enable_automatic_reminders', 'reminder_days',
        'tax_percentage', 'receipt_footer_text', 'receipt_copies', 'theme',
    )

    def to_dict(self):
        return {name: getattr(self, name) for name in self.FIELDS}
