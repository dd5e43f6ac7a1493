"""Excel import and export.

Exports build a pandas DataFrame and write it with xlsxwriter. Imports read
the first sheet and are best effort: rows that fail validation are logged and
counted as skipped.
"""

import io
import logging
import math
from datetime import date, datetime

import pandas as pd

from errors import ConflictError, ValidationError
from schemas import FeeStructureIn, StudentIn, parse

logger = logging.getLogger(__name__)

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'

STUDENT_COLUMNS = [
    'Admission No.', 'Student Name', 'Class', 'Section', 'Roll No.', 'Parent Name',
    'Contact No.', 'Email', 'Fee Category', 'Admission Date',
]


def _blank(value):
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def _pick(row, *keys, default=None):
    for key in keys:
        value = row.get(key)
        if not _blank(value):
            return value
    return default


def _text(value):
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _day(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return _text(value)


def to_workbook(frame, sheet_name):
    output = io.BytesIO()
    with pd.ExcelWriter(output, engine='xlsxwriter') as writer:
        frame.to_excel(writer, index=False, sheet_name=sheet_name)
    output.seek(0)
    return output


def read_workbook(stream):
    """Rows of the first sheet as dicts; empty cells come back as ``None``."""
    frame = pd.read_excel(stream, sheet_name=0, dtype=object)
    return [
        {key: (None if _blank(value) else value) for key, value in row.items()}
        for row in frame.to_dict(orient='records')
    ]


def students_frame(students):
    return pd.DataFrame([{
        'Admission No.': s.admission_number,
        'Student Name': s.student_name,
        'Class': s.grade,
        'Section': s.section,
        'Roll No.': s.roll_number,
        'Parent Name': s.parent_name,
        'Contact No.': s.contact_number,
        'Email': s.email or '',
        'Fee Category': s.fee_category,
        'Admission Date': s.admission_date.isoformat(),
    } for s in students], columns=STUDENT_COLUMNS)


def collection_frame(rows):
    return pd.DataFrame([{
        'Receipt No.': row['receipt_number'],
        'Student Name': row['student_name'],
        'Class': row['grade'],
        'Section': row['section'],
        'Date': row['receipt_date'],
        'Amount': row['total_amount'],
        'Payment Method': row['payment_method'],
        'Status': row['status'],
    } for row in rows], columns=['Receipt No.', 'Student Name', 'Class', 'Section', 'Date',
                                 'Amount', 'Payment Method', 'Status'])


def defaulters_frame(rows):
    return pd.DataFrame([{
        'Admission No.': row['admission_number'],
        'Student Name': row['student_name'],
        'Class': row['grade'],
        'Fee Type': row['fee_type'],
        'Description': row['description'],
        'Amount Due': row['balance'],
        'Due Date': row['due_date'],
        'Status': row['status'],
    } for row in rows], columns=['Admission No.', 'Student Name', 'Class', 'Fee Type',
                                 'Description', 'Amount Due', 'Due Date', 'Status'])


def student_from_row(row):
    """Map a spreadsheet row onto student fields, applying import defaults."""
    fields = {
        'admission_number': _text(_pick(row, 'Admission No.', 'AdmissionNumber', default='')),
        'student_name': _text(_pick(row, 'Student Name', 'StudentName', default='')),
        'grade': _text(_pick(row, 'Class', 'Grade', default='')),
        'section': _text(_pick(row, 'Section', default='A')),
        'roll_number': _pick(row, 'Roll No.', 'RollNumber', default=0),
        'parent_name': _text(_pick(row, 'Parent Name', 'ParentName', default='')),
        'contact_number': _text(_pick(row, 'Contact No.', 'ContactNumber', default='')),
        'email': _text(_pick(row, 'Email')),
        'fee_category': _text(_pick(row, 'Fee Category', 'FeeCategory', default='Regular')),
    }
    admission_date = _pick(row, 'Admission Date', 'AdmissionDate')
    if admission_date is not None:
        fields['admission_date'] = _day(admission_date)
    return fields


def fee_item_from_row(row):
    return {
        'grade': _text(_pick(row, 'Grade', 'grade', 'Class', default='')),
        'fee_type': _text(_pick(row, 'Fee Type', 'feeType', default='')),
        'amount': _pick(row, 'Amount', 'amount', default=0),
        'frequency': _text(_pick(row, 'Frequency', 'frequency', default='')),
        'due_day': _pick(row, 'Due Day', 'dueDay', default=1),
    }


def import_students(store, ledger, rows):
    created = []
    for number, row in enumerate(rows, start=2):
        try:
            fields = parse(StudentIn, student_from_row(row))
            if store.students.exists(admission_number=fields['admission_number']):
                raise ConflictError(f"Admission number {fields['admission_number']} already exists")
        except (ValidationError, ConflictError) as exc:
            logger.warning(f"Skipping student row {number}: {exc.message} {getattr(exc, 'errors', '')}")
            continue
        student = store.students.create(**fields)
        ledger.generate_dues(student)
        created.append(student)
    logger.info(f"Imported {len(created)} of {len(rows)} student rows")
    return {'created': created, 'skipped': len(rows) - len(created), 'total_rows': len(rows)}


def import_fee_structure(store, rows):
    created = []
    for number, row in enumerate(rows, start=2):
        try:
            fields = parse(FeeStructureIn, fee_item_from_row(row))
        except ValidationError as exc:
            logger.warning(f"Skipping fee structure row {number}: {exc.errors}")
            continue
        created.append(store.fee_structure.create(**fields))
    logger.info(f"Imported {len(created)} of {len(rows)} fee structure rows")
    return {'created': created, 'skipped': len(rows) - len(created), 'total_rows': len(rows)}
