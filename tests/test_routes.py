import io

import pandas as pd

from models import ProcessingStatus
from tests.conftest import USER_EMAIL, USER_PASSWORD


def _upload(client, data=b'%PDF-1.4 minimal', filename='invoice.pdf', content_type='application/pdf'):
    return client.post('/upload', data={'file': (io.BytesIO(data), filename, content_type)},
                       content_type='multipart/form-data')


def _set_key(client, key='good-key'):
    return client.post('/api-key', data={'api_key': key})


def test_health_is_public(client):
    r = client.get('/api/health')
    assert r.status_code == 200
    assert r.get_json()['status'] == 'ok'


def test_pages_require_login(client):
    r = client.get('/')
    assert r.status_code == 302
    assert '/login' in r.headers['Location']
    r = client.get('/api/status')
    assert r.status_code == 401
    assert r.get_json()['success'] is False


def test_bad_login_is_refused(client):
    r = client.post('/login', data={'email': USER_EMAIL, 'password': 'wrong'})
    assert r.status_code == 200
    assert b'Invalid email or password' in r.data


def test_logout_discards_workspace(app, logged_in):
    first = app.extensions['workspaces'].get(USER_EMAIL)
    logged_in.post('/logout')
    assert logged_in.get('/').status_code == 302
    logged_in.post('/login', data={'email': USER_EMAIL, 'password': USER_PASSWORD})
    assert app.extensions['workspaces'].get(USER_EMAIL) is not first


def test_api_key_gate(logged_in, workspace):
    r = logged_in.get('/')
    assert b'name="api_key"' in r.data

    r = _set_key(logged_in, 'bad-key')
    assert workspace.credentials.is_valid is False
    r = logged_in.get('/')
    assert b'name="api_key"' in r.data

    _set_key(logged_in, 'good-key')
    r = logged_in.get('/')
    assert b'Upload Invoice' in r.data


def test_unsupported_upload_never_reaches_extraction(logged_in, workspace):
    _set_key(logged_in)
    r = _upload(logged_in, b'hello', 'notes.txt', 'text/plain')
    assert r.status_code == 302
    assert workspace.selected_file is None
    assert logged_in.post('/api/process').status_code == 409
    assert workspace.credentials.client.calls == []


def test_multiple_files_are_rejected(logged_in, workspace):
    _set_key(logged_in)
    logged_in.post('/upload', data={'file': [
        (io.BytesIO(b'a'), 'a.pdf', 'application/pdf'),
        (io.BytesIO(b'b'), 'b.pdf', 'application/pdf'),
    ]}, content_type='multipart/form-data')
    assert workspace.selected_file is None


def test_extract_edit_export_scenario(logged_in, workspace):
    _set_key(logged_in)
    _upload(logged_in)
    assert workspace.selected_file.filename == 'invoice.pdf'

    r = logged_in.post('/process')
    assert r.status_code == 302
    status = logged_in.get('/api/status').get_json()['status']
    assert status['status'] == 'completed'
    assert status['message'].startswith('Successfully extracted 3 item(s)')

    r = logged_in.patch('/api/records/1', json={'field': 'total_price', 'value': '77.25'})
    assert r.status_code == 200
    assert r.get_json()['records'][1]['total_price'] == 77.25

    r = logged_in.get('/export')
    assert r.status_code == 200
    assert r.mimetype == 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    assert 'invoice-data-' in r.headers['Content-Disposition']
    df = pd.read_excel(io.BytesIO(r.data))
    assert len(df) == 3
    assert list(df['Total']) == [10.0, 77.25, 30.0]


def test_form_edits_replace_records(logged_in, workspace):
    _set_key(logged_in)
    _upload(logged_in)
    logged_in.post('/process')
    page = logged_in.get('/')
    assert b'rows-2-description' in page.data

    form = {f'rows-{i}-{field}': str(value)
            for i, record in enumerate(workspace.records)
            for field, value in record.items() if value is not None}
    form['rows-0-description'] = 'Consulting (edited)'
    form['rows-0-quantity'] = 'TBD'
    logged_in.post('/records', data=form)

    assert workspace.records[0]['description'] == 'Consulting (edited)'
    assert workspace.records[0]['quantity'] == 'TBD'
    assert workspace.records[1]['quantity'] == 2.0
    assert len(workspace.records) == 3


def test_new_upload_clears_previous_results(logged_in, workspace):
    _set_key(logged_in)
    _upload(logged_in)
    logged_in.post('/process')
    assert len(workspace.records) == 3
    _upload(logged_in, b'\x89PNG', 'next.png', 'image/png')
    assert workspace.records == []
    assert workspace.status.status == 'idle'


def test_provider_failure_scenario(logged_in, workspace):
    _set_key(logged_in, 'good-broken')
    _upload(logged_in)
    logged_in.post('/process')
    body = logged_in.get('/api/records').get_json()
    assert body['status'] == {'status': 'error', 'message': 'Provider unavailable (503)'}
    assert body['records'] == []

    r = logged_in.get('/export')
    df = pd.read_excel(io.BytesIO(r.data))
    assert df.empty


def test_zero_records_is_completed(logged_in, workspace):
    _set_key(logged_in, 'good-empty')
    _upload(logged_in)
    body = logged_in.post('/api/process').get_json()
    assert body['status']['status'] == 'completed'
    assert body['stats']['total_line_items'] == 0


def test_trigger_and_export_blocked_while_processing(logged_in, workspace):
    _set_key(logged_in)
    _upload(logged_in)
    workspace.status = ProcessingStatus.processing()

    assert logged_in.post('/api/process').status_code == 409
    assert workspace.credentials.client.calls == []
    r = logged_in.get('/export')
    assert r.status_code == 302
    page = logged_in.get('/')
    assert b'id="processBtn" class="btn btn-primary" disabled' in page.data


def test_put_records_validates_payload(logged_in, workspace):
    _set_key(logged_in)
    assert logged_in.put('/api/records', json={'records': 'nope'}).status_code == 400
    r = logged_in.put('/api/records', json={'records': [{'description': 'manual', 'total_price': '5'}]})
    assert r.status_code == 200
    assert workspace.records[0]['total_price'] == 5.0


def test_patch_unknown_field_or_row(logged_in, workspace):
    _set_key(logged_in)
    assert logged_in.patch('/api/records/0', json={'field': 'total_price', 'value': 1}).status_code == 404
    workspace.update_records([{'description': 'x'}])
    assert logged_in.patch('/api/records/0', json={'field': 'bogus', 'value': 1}).status_code == 400


def test_non_object_json_bodies_are_rejected(logged_in, workspace):
    _set_key(logged_in)
    r = logged_in.put('/api/records', json=[{'description': 'x'}])
    assert r.status_code == 400
    assert r.get_json()['success'] is False
    workspace.update_records([{'description': 'x'}])
    r = logged_in.patch('/api/records/0', json=['total_price', 1])
    assert r.status_code == 400
    assert r.get_json()['success'] is False
    assert workspace.records[0]['description'] == 'x'


def test_saved_key_is_used_after_restart(app, logged_in):
    _set_key(logged_in)
    app.extensions['workspaces'].discard(USER_EMAIL)
    r = logged_in.get('/')
    assert b'Upload Invoice' in r.data
