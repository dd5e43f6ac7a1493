from datetime import date

import pytest

from app import create_app
from models import db
from repository import Store


STUDENT = {
    'admission_number': 'KTS-001',
    'student_name': 'Asha Rao',
    'grade': '5',
    'section': 'A',
    'roll_number': 3,
    'parent_name': 'Ravi Rao',
    'contact_number': '9876543210',
    'admission_date': '2025-04-01',
}


def add_fee(client, **fields):
    body = {'grade': '5', 'fee_type': 'Tuition', 'amount': 2000, 'frequency': 'Monthly'}
    body.update(fields)
    response = client.post('/api/fee-structure', json=body)
    assert response.status_code == 201
    return response.get_json()


def admit(client, **fields):
    body = dict(STUDENT)
    body.update(fields)
    response = client.post('/api/students', json=body)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def backdate(app, due_id, due_date=date(2020, 1, 1)):
    with app.app_context():
        store = Store()
        store.fee_dues.update(due_id, due_date=due_date)
        store.commit()


def test_admission_generates_dues(client):
    add_fee(client)
    add_fee(client, fee_type='Library', amount=500, frequency='Annual')

    student = admit(client)

    assert sorted(due['fee_type'] for due in student['fee_dues']) == ['Library', 'Tuition']
    dues = client.get(f"/api/fee-dues/student/{student['id']}").get_json()
    assert {due['fee_type']: due['amount'] for due in dues} == {'Tuition': 2000, 'Library': 500}
    assert all(due['status'] == 'Due' and due['amount_paid'] == 0 for due in dues)


def test_validation_errors_are_structured(client):
    response = client.post('/api/students', json={'student_name': 'No Grade'})
    assert response.status_code == 400
    body = response.get_json()
    assert body['message'] == 'Validation error'
    fields = {error['field'] for error in body['errors']}
    assert {'admission_number', 'grade', 'parent_name', 'contact_number'} <= fields


def test_unknown_grade_is_rejected(client):
    response = client.post('/api/students', json=dict(STUDENT, grade='13'))
    assert response.status_code == 400
    assert response.get_json()['errors'][0]['field'] == 'grade'


def test_duplicate_admission_number_conflicts(client):
    admit(client)
    response = client.post('/api/students', json=STUDENT)
    assert response.status_code == 409


def test_student_update_and_search(client):
    student = admit(client)
    response = client.put(f"/api/students/{student['id']}", json={'section': 'B'})
    assert response.status_code == 200
    assert response.get_json()['section'] == 'B'
    assert response.get_json()['student_name'] == 'Asha Rao'

    found = client.get('/api/students?q=ravi').get_json()
    assert [s['id'] for s in found] == [student['id']]
    assert client.get('/api/students?grade=6').get_json() == []


@pytest.mark.parametrize('changes', [
    {'student_name': None},
    {'grade': None},
    {'admission_date': None},
    {'parent_name': ''},
    {'contact_number': '   '},
])
def test_student_update_cannot_blank_required_fields(client, changes):
    student = admit(client)
    response = client.put(f"/api/students/{student['id']}", json=changes)
    assert response.status_code == 400
    assert [error['field'] for error in response.get_json()['errors']] == list(changes)
    assert client.get(f"/api/students/{student['id']}").get_json()['student_name'] == 'Asha Rao'


def test_nullable_student_fields_can_be_cleared(client):
    student = admit(client, email='asha@example.com')
    response = client.put(f"/api/students/{student['id']}", json={'email': None})
    assert response.status_code == 200
    assert response.get_json()['email'] is None


def test_missing_records_return_404(client):
    assert client.get('/api/students/99').status_code == 404
    assert client.put('/api/students/99', json={'section': 'B'}).status_code == 404
    assert client.delete('/api/students/99').status_code == 404
    assert client.get('/api/receipts/99').get_json()['message'] == 'Receipt not found'


def test_receipt_flow(client):
    add_fee(client, amount=800)
    add_fee(client, fee_type='Library', amount=500, frequency='Annual')
    student = admit(client)
    dues = client.get(f"/api/fee-dues/student/{student['id']}").get_json()

    number = client.get('/api/generate-receipt-number?grade=5&section=A').get_json()
    assert number == {'receipt_number': 'REC5A0001'}

    response = client.post('/api/receipts', json={
        'student_id': student['id'],
        'payment_method': 'Cash',
        'receipt_date': '2025-05-10',
        'items': [{'fee_due_id': due['id'], 'amount': due['amount']} for due in dues],
    })
    assert response.status_code == 201
    body = response.get_json()
    assert body['receipt']['total_amount'] == 1300
    assert body['receipt']['receipt_number'] == 'REC5A0001'
    assert len(body['items']) == 2

    dues = client.get(f"/api/fee-dues/student/{student['id']}").get_json()
    assert {due['status'] for due in dues} == {'Paid'}

    detail = client.get(f"/api/receipts/{body['receipt']['id']}").get_json()
    assert detail['student']['admission_number'] == 'KTS-001'
    assert len(detail['items']) == 2

    recent = client.get('/api/receipts').get_json()
    assert recent[0]['student_name'] == 'Asha Rao'
    assert recent[0]['section'] == 'A'

    pdf = client.get(f"/api/receipts/{body['receipt']['id']}/pdf")
    assert pdf.status_code == 200
    assert pdf.mimetype == 'application/pdf'
    assert pdf.data.startswith(b'%PDF')


def test_rejected_receipt_writes_nothing(client):
    add_fee(client, amount=800)
    student = admit(client)
    due = client.get(f"/api/fee-dues/student/{student['id']}").get_json()[0]

    response = client.post('/api/receipts', json={
        'student_id': student['id'],
        'payment_method': 'Cash',
        'items': [{'fee_due_id': due['id'], 'amount': 900}],
    })

    assert response.status_code == 400
    assert client.get('/api/receipts').get_json() == []
    due = client.get(f"/api/fee-dues/student/{student['id']}").get_json()[0]
    assert due['amount_paid'] == 0


def test_receipt_amounts_must_be_finite_whole_cents(client):
    add_fee(client, amount=800)
    student = admit(client)
    due = client.get(f"/api/fee-dues/student/{student['id']}").get_json()[0]

    sub_cent = client.post('/api/receipts', json={
        'student_id': student['id'],
        'payment_method': 'Cash',
        'items': [{'fee_due_id': due['id'], 'amount': 0.004}],
    })
    assert sub_cent.status_code == 400
    assert sub_cent.get_json()['errors'][0]['field'] == 'items.0.amount'

    nan = client.post('/api/receipts', content_type='application/json',
                      data='{"student_id": %d, "payment_method": "Cash", '
                           '"items": [{"fee_due_id": %d, "amount": NaN}]}' % (student['id'], due['id']))
    assert nan.status_code == 400
    assert nan.get_json()['errors'][0]['field'] == 'items.0.amount'

    assert client.get('/api/receipts').get_json() == []
    due = client.get(f"/api/fee-dues/student/{student['id']}").get_json()[0]
    assert (due['amount_paid'], due['status']) == (0, 'Due')


def test_receipt_for_missing_due_conflicts(client):
    student = admit(client)
    response = client.post('/api/receipts', json={
        'student_id': student['id'],
        'payment_method': 'Cash',
        'items': [{'fee_due_id': 123, 'amount': 10}],
    })
    assert response.status_code == 409


def test_defaulters_and_overdue_sweep(client, app):
    add_fee(client, due_day=1)
    student = admit(client)
    due = client.get(f"/api/fee-dues/student/{student['id']}").get_json()[0]

    defaulters = client.get('/api/defaulters').get_json()
    assert [row['id'] for row in defaulters] == [due['id']]
    assert defaulters[0]['student_name'] == 'Asha Rao'
    assert defaulters[0]['admission_number'] == 'KTS-001'

    client.post('/api/receipts', json={
        'student_id': student['id'],
        'payment_method': 'UPI',
        'items': [{'fee_due_id': due['id'], 'amount': 500}],
    })
    assert client.get('/api/defaulters').get_json() == []
    assert len(client.get('/api/defaulters?include_partial=true').get_json()) == 1

    backdate(app, due['id'])
    assert client.post('/api/fee-dues/mark-overdue').get_json()['updated'] == 1
    assert client.post('/api/fee-dues/mark-overdue').get_json()['updated'] == 0
    assert client.get(f"/api/fee-dues/student/{student['id']}").get_json()[0]['status'] == 'Overdue'


def test_mark_overdue_command(client, app):
    add_fee(client)
    student = admit(client)
    due = client.get(f"/api/fee-dues/student/{student['id']}").get_json()[0]
    backdate(app, due['id'])

    result = app.test_cli_runner().invoke(args=['mark-overdue'])

    assert result.exit_code == 0
    assert 'Marked 1 fee dues overdue' in result.output
    assert client.get(f"/api/fee-dues/student/{student['id']}").get_json()[0]['status'] == 'Overdue'
    assert 'Marked 0 fee dues overdue' in app.test_cli_runner().invoke(args=['mark-overdue']).output


def test_generate_dues_endpoint_is_idempotent(client):
    add_fee(client)
    student = admit(client)
    response = client.post('/api/fee-dues', json={'student_id': student['id']})
    assert response.status_code == 201
    assert response.get_json() == []
    assert client.post('/api/fee-dues', json={'student_id': 999}).status_code == 404


def test_delete_student_removes_dues_and_receipts(client):
    add_fee(client, amount=100)
    student = admit(client)
    due = client.get(f"/api/fee-dues/student/{student['id']}").get_json()[0]
    client.post('/api/receipts', json={
        'student_id': student['id'],
        'payment_method': 'Cash',
        'items': [{'fee_due_id': due['id'], 'amount': 100}],
    })

    assert client.delete(f"/api/students/{student['id']}").status_code == 204
    assert client.get(f"/api/fee-dues/student/{student['id']}").get_json() == []
    assert client.get('/api/receipts').get_json() == []


def test_transportation_routes(client):
    route = client.post('/api/transportation-routes',
                        json={'route_name': 'North', 'fare': 750, 'distance': 8.5}).get_json()
    client.post('/api/transportation-routes', json={'route_name': 'Old', 'fare': 500, 'is_active': False})

    active = client.get('/api/transportation-routes?active_only=true').get_json()
    assert [r['route_name'] for r in active] == ['North']

    student = admit(client, transportation_route_id=route['id'])
    assert [due['fee_type'] for due in student['fee_dues']] == ['Transportation']
    riders = client.get(f"/api/transportation-routes/{route['id']}/students").get_json()
    assert [s['id'] for s in riders] == [student['id']]

    response = client.delete(f"/api/transportation-routes/{route['id']}")
    assert response.status_code == 409
    assert response.get_json()['student_count'] == 1

    updated = client.put(f"/api/transportation-routes/{route['id']}", json={'fare': 800}).get_json()
    assert updated['fare'] == 800
    assert client.put(f"/api/transportation-routes/{route['id']}", json={'fare': None}).status_code == 400
    assert client.put(f"/api/transportation-routes/{route['id']}",
                      json={'is_active': None}).status_code == 400


def test_student_with_unknown_route_is_rejected(client):
    response = client.post('/api/students', json=dict(STUDENT, transportation_route_id=5))
    assert response.status_code == 400


def test_fee_structure_crud(client):
    item = add_fee(client, due_day=10)
    assert client.get('/api/fee-structure/grade/5').get_json() == [item]
    updated = client.put(f"/api/fee-structure/{item['id']}", json={'amount': 2100}).get_json()
    assert updated['amount'] == 2100 and updated['due_day'] == 10
    bad = client.put(f"/api/fee-structure/{item['id']}", json={'frequency': 'Weekly'})
    assert bad.status_code == 400
    for changes in ({'amount': None}, {'fee_type': None}, {'amount': 99.999}):
        bad = client.put(f"/api/fee-structure/{item['id']}", json=changes)
        assert bad.status_code == 400
        assert bad.get_json()['errors'][0]['field'] in changes
    assert client.get('/api/fee-structure').get_json()[0]['amount'] == 2100
    assert client.delete(f"/api/fee-structure/{item['id']}").status_code == 204
    assert client.get('/api/fee-structure').get_json() == []


def test_dashboard_stats(client):
    add_fee(client, amount=300)
    student = admit(client)
    due = client.get(f"/api/fee-dues/student/{student['id']}").get_json()[0]
    client.post('/api/receipts', json={
        'student_id': student['id'],
        'payment_method': 'Cash',
        'receipt_date': date.today().isoformat(),
        'items': [{'fee_due_id': due['id'], 'amount': 100}],
    })

    stats = client.get('/api/dashboard/stats').get_json()
    assert stats == {
        'today_collection': 100,
        'receipts_generated': 1,
        'pending_payments': 1,
        'total_students': 1,
    }


def test_settings(client):
    settings = client.get('/api/settings').get_json()
    assert settings['receipt_prefix'] == 'GES'
    assert settings['theme'] == 'light'

    updated = client.put('/api/settings', json={'school_name': 'Hill School', 'tax_percentage': 5}).get_json()
    assert updated['school_name'] == 'Hill School'
    assert updated['tax_percentage'] == 5
    assert updated['receipt_copies'] == 2

    assert client.put('/api/settings', json={'theme': 'neon'}).status_code == 400
    assert client.put('/api/settings', json={'tax_percentage': 120}).status_code == 400
    assert client.put('/api/settings', json={'school_name': None}).status_code == 400
    assert client.put('/api/settings', json={'receipt_copies': None}).status_code == 400
    assert client.get('/api/settings').get_json()['school_name'] == 'Hill School'


def test_constants(client):
    constants = client.get('/api/constants').get_json()
    assert 'Tuition' in constants['FEE_TYPES']
    assert constants['DUE_STATUSES'] == ['Due', 'Partial', 'Paid', 'Overdue']


def test_bad_report_dates_are_rejected(client):
    response = client.get('/api/excel/fee-collection-report?start_date=yesterday')
    assert response.status_code == 400
    assert response.get_json()['errors'][0]['field'] == 'start_date'


@pytest.fixture
def secured_client():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'LOGIN_DISABLED': False,
        'SECRET_KEY': 'test',
        'ADMIN_USERNAME': 'bursar',
        'ADMIN_PASSWORD': 's3cret',
    })
    yield app.test_client()
    with app.app_context():
        db.session.remove()
        db.drop_all()


def test_login_required(secured_client):
    assert secured_client.get('/api/students').status_code == 401

    bad = secured_client.post('/api/login', json={'username': 'bursar', 'password': 'wrong'})
    assert bad.status_code == 401

    good = secured_client.post('/api/login', json={'username': 'bursar', 'password': 's3cret'})
    assert good.status_code == 200
    assert good.get_json()['role'] == 'Administrator'
    assert secured_client.get('/api/students').status_code == 200
    assert secured_client.get('/api/me').get_json()['username'] == 'bursar'

    secured_client.post('/api/logout')
    assert secured_client.get('/api/students').status_code == 401
