from flask import Flask, Blueprint, jsonify, request, send_file, g, current_app
from flask.cli import with_appcontext
from flask_migrate import Migrate
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import date
from zipfile import BadZipFile
import click
import logging
import os
from dotenv import load_dotenv

from models import (
    db, GRADES, SECTIONS, FEE_TYPES, FREQUENCIES, TRANSPORTATION_FREQUENCY,
    PAYMENT_METHODS, DUE_STATUSES,
)
from repository import Store
from ledger import FeeLedger
from receipts import ReceiptIssuer
from errors import FeeError, NotFound, ConflictError, ValidationError
from schemas import (
    parse, parse_model, StudentIn, StudentUpdate, FeeStructureIn, FeeStructureUpdate,
    RouteIn, RouteUpdate, GenerateDuesIn, ReceiptIn, SettingsUpdate, LoginIn,
)
from pdf_receipt import render_receipt_pdf
import excel_io
import reports

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

login_manager = LoginManager()
migrate = Migrate()
api = Blueprint('api', __name__, url_prefix='/api')


def create_app(config=None, store_factory=None):
    app = Flask(__name__)

    # Configure app
    app.config.update(
        SQLALCHEMY_DATABASE_URI=os.getenv('DATABASE_URL', 'sqlite:///fees.db'),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        SECRET_KEY=os.getenv('SECRET_KEY', 'default-secret-key'),
        LOGIN_DISABLED=os.getenv('LOGIN_DISABLED', '').lower() in ('1', 'true', 'yes'),
        LOG_LEVEL=os.getenv('LOG_LEVEL', 'INFO'),
        ADMIN_USERNAME=os.getenv('ADMIN_USERNAME', 'admin'),
        ADMIN_PASSWORD=os.getenv('ADMIN_PASSWORD', 'admin123'),
    )
    if config:
        app.config.update(config)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    app.extensions['fee_store_factory'] = store_factory or Store

    app.register_blueprint(api)
    register_error_handlers(app)
    app.cli.add_command(mark_overdue_command)

    with app.app_context():
        db.create_all()
        seed_admin(get_store(), app.config['ADMIN_USERNAME'], app.config['ADMIN_PASSWORD'])

    return app


def get_store():
    """The record store for the current app context."""
    if 'store' not in g:
        g.store = current_app.extensions['fee_store_factory']()
    return g.store


def seed_admin(store, username, password):
    if store.users.exists(username=username):
        return
    store.users.create(
        username=username,
        password_hash=generate_password_hash(password),
        role='Administrator',
        full_name='Admin Staff',
        email='admin@school.com',
    )
    store.commit()
    logger.info(f"Created administrator account {username!r}")


def register_error_handlers(app):
    @app.errorhandler(FeeError)
    def handle_fee_error(exc):
        get_store().rollback()
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({'message': exc.description}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        logger.exception('Unhandled error while serving %s %s', request.method, request.path)
        get_store().rollback()
        return jsonify({'message': 'Unknown error occurred'}), 500


@login_manager.user_loader
def load_user(user_id):
    return get_store().users.get(int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'message': 'Authentication required'}), 401


@click.command('mark-overdue')
@with_appcontext
def mark_overdue_command():
    """Mark unpaid fee dues past their due date as overdue."""
    store = get_store()
    changed = FeeLedger(store).mark_overdue()
    store.commit()
    click.echo(f"Marked {len(changed)} fee dues overdue")


def _query_date(name):
    value = request.args.get(name)
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(errors=[{'field': name, 'message': 'Expected a date as YYYY-MM-DD'}])


def _query_flag(name):
    return request.args.get(name, '').lower() in ('1', 'true', 'yes')


def _require(record, label):
    if record is None:
        raise NotFound(f"{label} not found")
    return record


def _check_route(store, route_id):
    if route_id is not None and store.routes.get(route_id) is None:
        raise ValidationError(errors=[{'field': 'transportation_route_id',
                                       'message': f"Transportation route {route_id} does not exist"}])


def _uploaded_rows():
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        raise ValidationError(errors=[{'field': 'file', 'message': 'Upload an Excel file'}])
    try:
        return excel_io.read_workbook(upload.stream)
    except (ValueError, BadZipFile):
        raise ValidationError('Invalid Excel data format')


def _excel_download(frame, sheet_name, filename):
    return send_file(
        excel_io.to_workbook(frame, sheet_name),
        as_attachment=True,
        download_name=filename,
        mimetype=excel_io.XLSX_MIMETYPE,
    )


# Auth
@api.route('/login', methods=['POST'])
def login():
    credentials = parse_model(LoginIn, request.get_json(silent=True))
    user = get_store().users.first(username=credentials.username)
    if user is None or not check_password_hash(user.password_hash, credentials.password):
        return jsonify({'message': 'Invalid username or password'}), 401
    login_user(user)
    return jsonify(user.to_dict())


@api.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return '', 204


@api.route('/me')
@login_required
def me():
    if not current_user.is_authenticated:
        return jsonify({'message': 'Authentication disabled'})
    return jsonify(current_user.to_dict())


# Students
@api.route('/students')
@login_required
def list_students():
    query = request.args.get('q', '').strip().lower()
    grade = request.args.get('grade')
    store = get_store()
    students = store.students.list(grade=grade) if grade else store.students.list()
    if query:
        students = [
            s for s in students
            if query in s.student_name.lower()
            or query in s.admission_number.lower()
            or query in s.parent_name.lower()
        ]
    return jsonify([s.to_dict() for s in students])


@api.route('/students/<int:student_id>')
@login_required
def get_student(student_id):
    return jsonify(_require(get_store().students.get(student_id), 'Student').to_dict())


@api.route('/students', methods=['POST'])
@login_required
def create_student():
    fields = parse(StudentIn, request.get_json(silent=True))
    store = get_store()
    if store.students.exists(admission_number=fields['admission_number']):
        raise ConflictError(f"Admission number {fields['admission_number']} already exists")
    _check_route(store, fields['transportation_route_id'])

    student = store.students.create(**fields)
    dues = FeeLedger(store).generate_dues(student)
    store.commit()
    logger.info(f"Admitted student {student.admission_number} to grade {student.grade}")

    body = student.to_dict()
    body['fee_dues'] = [due.to_dict() for due in dues]
    return jsonify(body), 201


@api.route('/students/<int:student_id>', methods=['PUT'])
@login_required
def update_student(student_id):
    changes = parse(StudentUpdate, request.get_json(silent=True), partial=True)
    store = get_store()
    student = _require(store.students.get(student_id), 'Student')
    number = changes.get('admission_number')
    if number and number != student.admission_number and store.students.exists(admission_number=number):
        raise ConflictError(f"Admission number {number} already exists")
    _check_route(store, changes.get('transportation_route_id'))

    student = store.students.update(student_id, **changes)
    store.commit()
    return jsonify(student.to_dict())


@api.route('/students/<int:student_id>', methods=['DELETE'])
@login_required
def delete_student(student_id):
    store = get_store()
    student = _require(store.students.get(student_id), 'Student')
    # Also delete the student's receipts and dues
    for receipt in store.receipts.list(student_id=student_id):
        for item in store.receipt_items.list(receipt_id=receipt.id):
            store.receipt_items.delete(item.id)
        store.receipts.delete(receipt.id)
    for due in store.fee_dues.list(student_id=student_id):
        store.fee_dues.delete(due.id)
    store.students.delete(student_id)
    store.commit()
    logger.info(f"Deleted student {student.admission_number} with their dues and receipts")
    return '', 204


@api.route('/students/<int:student_id>/receipts')
@login_required
def student_receipts(student_id):
    store = get_store()
    _require(store.students.get(student_id), 'Student')
    return jsonify([r.to_dict() for r in store.receipts.list(student_id=student_id)])


# Fee structure
@api.route('/fee-structure')
@login_required
def list_fee_structure():
    return jsonify([item.to_dict() for item in get_store().fee_structure.list()])


@api.route('/fee-structure/grade/<grade>')
@login_required
def fee_structure_by_grade(grade):
    return jsonify([item.to_dict() for item in get_store().fee_structure.list(grade=grade)])


@api.route('/fee-structure', methods=['POST'])
@login_required
def create_fee_structure():
    fields = parse(FeeStructureIn, request.get_json(silent=True))
    store = get_store()
    item = store.fee_structure.create(**fields)
    store.commit()
    return jsonify(item.to_dict()), 201


@api.route('/fee-structure/<int:item_id>', methods=['PUT'])
@login_required
def update_fee_structure(item_id):
    changes = parse(FeeStructureUpdate, request.get_json(silent=True), partial=True)
    store = get_store()
    item = _require(store.fee_structure.update(item_id, **changes), 'Fee structure item')
    store.commit()
    return jsonify(item.to_dict())


@api.route('/fee-structure/<int:item_id>', methods=['DELETE'])
@login_required
def delete_fee_structure(item_id):
    store = get_store()
    if not store.fee_structure.delete(item_id):
        raise NotFound('Fee structure item not found')
    store.commit()
    return '', 204


# Receipts
@api.route('/receipts')
@login_required
def list_receipts():
    limit = request.args.get('limit', 10, type=int)
    return jsonify(reports.recent_receipts(get_store(), limit))


@api.route('/receipts/<int:receipt_id>')
@login_required
def get_receipt(receipt_id):
    store = get_store()
    receipt = _require(store.receipts.get(receipt_id), 'Receipt')
    student = store.students.get(receipt.student_id)
    return jsonify({
        'receipt': receipt.to_dict(),
        'items': [item.to_dict() for item in store.receipt_items.list(receipt_id=receipt_id)],
        'student': student.to_dict() if student else None,
    })


@api.route('/receipts/<int:receipt_id>/pdf')
@login_required
def receipt_pdf(receipt_id):
    store = get_store()
    receipt = _require(store.receipts.get(receipt_id), 'Receipt')
    pdf = render_receipt_pdf(
        receipt,
        store.receipt_items.list(receipt_id=receipt_id),
        store.students.get(receipt.student_id),
        store.settings.get(),
    )
    return send_file(pdf, as_attachment=True, download_name=f"{receipt.receipt_number}.pdf",
                     mimetype='application/pdf')


@api.route('/generate-receipt-number')
@login_required
def generate_receipt_number():
    number = ReceiptIssuer(get_store()).next_receipt_number(
        request.args.get('grade', ''), request.args.get('section', ''))
    return jsonify({'receipt_number': number})


@api.route('/receipts', methods=['POST'])
@login_required
def create_receipt():
    payload = parse_model(ReceiptIn, request.get_json(silent=True))
    issued = ReceiptIssuer(get_store()).issue(
        payload.student_id,
        payload.items,
        payload.payment_method,
        receipt_date=payload.receipt_date,
        reference=payload.payment_reference,
        remarks=payload.remarks,
        receipt_number=payload.receipt_number,
    )
    return jsonify({
        'receipt': issued.receipt.to_dict(),
        'items': [item.to_dict() for item in issued.items],
    }), 201


# Fee dues
@api.route('/fee-dues/student/<int:student_id>')
@login_required
def student_dues(student_id):
    return jsonify([due.to_dict() for due in FeeLedger(get_store()).student_dues(student_id)])


@api.route('/fee-dues', methods=['POST'])
@login_required
def generate_dues():
    payload = parse_model(GenerateDuesIn, request.get_json(silent=True))
    store = get_store()
    student = _require(store.students.get(payload.student_id), 'Student')
    dues = FeeLedger(store).generate_dues(student)
    store.commit()
    return jsonify([due.to_dict() for due in dues]), 201


@api.route('/fee-dues/mark-overdue', methods=['POST'])
@login_required
def mark_overdue():
    store = get_store()
    changed = FeeLedger(store).mark_overdue()
    store.commit()
    return jsonify({'updated': len(changed), 'fee_dues': [due.to_dict() for due in changed]})


@api.route('/defaulters')
@login_required
def defaulters():
    return jsonify(FeeLedger(get_store()).defaulters(include_partial=_query_flag('include_partial')))


# Transportation routes
@api.route('/transportation-routes')
@login_required
def list_routes():
    store = get_store()
    routes = store.routes.list(is_active=True) if _query_flag('active_only') else store.routes.list()
    return jsonify([route.to_dict() for route in routes])


@api.route('/transportation-routes/<int:route_id>')
@login_required
def get_route(route_id):
    return jsonify(_require(get_store().routes.get(route_id), 'Transportation route').to_dict())


@api.route('/transportation-routes/<int:route_id>/students')
@login_required
def route_students(route_id):
    store = get_store()
    _require(store.routes.get(route_id), 'Transportation route')
    return jsonify([s.to_dict() for s in store.students.list(transportation_route_id=route_id)])


@api.route('/transportation-routes', methods=['POST'])
@login_required
def create_route():
    fields = parse(RouteIn, request.get_json(silent=True))
    store = get_store()
    route = store.routes.create(**fields)
    store.commit()
    return jsonify(route.to_dict()), 201


@api.route('/transportation-routes/<int:route_id>', methods=['PUT'])
@login_required
def update_route(route_id):
    changes = parse(RouteUpdate, request.get_json(silent=True), partial=True)
    store = get_store()
    route = _require(store.routes.update(route_id, **changes), 'Transportation route')
    store.commit()
    return jsonify(route.to_dict())


@api.route('/transportation-routes/<int:route_id>', methods=['DELETE'])
@login_required
def delete_route(route_id):
    store = get_store()
    _require(store.routes.get(route_id), 'Transportation route')
    riders = store.students.count(transportation_route_id=route_id)
    if riders:
        raise ConflictError('Cannot delete transportation route as it is assigned to students',
                            {'student_count': riders})
    store.routes.delete(route_id)
    store.commit()
    return '', 204


# Dashboard
@api.route('/dashboard/stats')
@login_required
def dashboard_stats():
    return jsonify(reports.dashboard_stats(get_store()))


# Excel
@api.route('/excel/import-fee-structure', methods=['POST'])
@login_required
def import_fee_structure():
    rows = _uploaded_rows()
    store = get_store()
    result = excel_io.import_fee_structure(store, rows)
    store.commit()
    return jsonify({
        'message': f"Successfully imported {len(result['created'])} fee items",
        'imported_count': len(result['created']),
        'skipped': result['skipped'],
        'total_rows': result['total_rows'],
    })


@api.route('/excel/import-students', methods=['POST'])
@login_required
def import_students():
    rows = _uploaded_rows()
    store = get_store()
    result = excel_io.import_students(store, FeeLedger(store), rows)
    store.commit()
    return jsonify({
        'message': f"Successfully imported {len(result['created'])} students",
        'imported_count': len(result['created']),
        'skipped': result['skipped'],
        'total_rows': result['total_rows'],
    })


@api.route('/excel/export-students')
@login_required
def export_students():
    grade = request.args.get('grade')
    store = get_store()
    students = store.students.list(grade=grade) if grade else store.students.list()
    return _excel_download(excel_io.students_frame(students), 'Students', 'students.xlsx')


@api.route('/excel/fee-collection-report')
@login_required
def fee_collection_report():
    rows = reports.collection_rows(get_store(), _query_date('start_date'), _query_date('end_date'))
    return _excel_download(excel_io.collection_frame(rows), 'Fee Collection', 'fee_collection_report.xlsx')


@api.route('/excel/defaulters-report')
@login_required
def defaulters_report():
    rows = FeeLedger(get_store()).defaulters(include_partial=_query_flag('include_partial'))
    return _excel_download(excel_io.defaulters_frame(rows), 'Defaulters', 'defaulters_report.xlsx')


# Constants and settings
@api.route('/constants')
def constants():
    return jsonify({
        'GRADES': GRADES,
        'SECTIONS': SECTIONS,
        'FEE_TYPES': FEE_TYPES,
        'FREQUENCIES': FREQUENCIES,
        'PAYMENT_METHODS': PAYMENT_METHODS,
        'DUE_STATUSES': DUE_STATUSES,
        'TRANSPORTATION_FREQUENCY': TRANSPORTATION_FREQUENCY,
    })


@api.route('/settings')
@login_required
def get_settings():
    store = get_store()
    settings = store.settings.get()
    store.commit()
    return jsonify(settings.to_dict())


@api.route('/settings', methods=['PUT'])
@login_required
def update_settings():
    changes = parse(SettingsUpdate, request.get_json(silent=True), partial=True)
    store = get_store()
    settings = store.settings.update(**changes)
    store.commit()
    logger.info(f"Updated school settings: {', '.join(sorted(changes)) or 'no changes'}")
    return jsonify(settings.to_dict())


if __name__ == '__main__':
    create_app().run(debug=True)
