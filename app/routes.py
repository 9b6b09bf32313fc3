import io
from datetime import datetime

from flask import (Blueprint, current_app, flash, jsonify, redirect, render_template, request, send_file,
                   url_for)
from werkzeug.exceptions import RequestEntityTooLarge

from app.services import UnsupportedFileType, build_result_payload, rows_from_form, select_file
from app.workspace import Workspace, WorkspaceBusy
from auth import authenticate, get_current_user, login_required, login_user, logout_user
from models import RECORD_FIELDS
from spreadsheet_export import COLUMN_HEADERS, XLSX_MIME_TYPE, export_filename, export_records

routes_bp = Blueprint("routes", __name__, url_prefix="")


def _workspace() -> Workspace:
    return current_app.extensions['workspaces'].get(get_current_user()['email'])


def _api_error(message: str, status_code: int):
    return jsonify({'success': False, 'errors': [message]}), status_code


@routes_bp.app_errorhandler(RequestEntityTooLarge)
def file_too_large(_):
    limit_mb = current_app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)
    if request.path.startswith('/api/'):
        return _api_error(f'File too large (max {limit_mb}MB)', 413)
    flash(f'File too large (max {limit_mb}MB).')
    return redirect(url_for('routes.index'))


@routes_bp.route('/login', methods=['GET', 'POST'], endpoint='login')
def login():
    if request.method == 'POST':
        email = request.form.get('email', '')
        if authenticate(email, request.form.get('password', '')):
            login_user(email)
            current_app.logger.info(f"User {email} signed in")
            next_url = request.args.get('next', '')
            if not next_url.startswith('/') or next_url.startswith('//'):
                next_url = url_for('routes.index')
            return redirect(next_url)
        current_app.logger.warning(f"Failed sign-in for {email}")
        flash('Invalid email or password.')
    return render_template('login.html')


@routes_bp.route('/logout', methods=['POST'], endpoint='logout')
def logout():
    email = logout_user()
    if email:
        current_app.extensions['workspaces'].discard(email)
        current_app.logger.info(f"User {email} signed out")
    return redirect(url_for('routes.login'))


@routes_bp.route('/', endpoint='index')
@login_required
def index():
    workspace = _workspace()
    user = get_current_user()
    if not workspace.credentials.is_valid:
        return render_template('api_key.html', user=user, is_valid=workspace.credentials.is_valid)
    return render_template(
        'index.html',
        user=user,
        view=workspace.snapshot(),
        fields=RECORD_FIELDS,
        headers=COLUMN_HEADERS,
        provider=current_app.config['LLM_PROVIDER'],
    )


@routes_bp.route('/api-key', methods=['POST'], endpoint='set_api_key')
@login_required
def set_api_key():
    workspace = _workspace()
    if workspace.credentials.set_credential(request.form.get('api_key', '').strip()):
        flash('API key saved.')
    else:
        flash('Invalid API key. Please check it and try again.')
    return redirect(url_for('routes.index'))


@routes_bp.route('/api-key/reset', methods=['POST'], endpoint='reset_api_key')
@login_required
def reset_api_key():
    _workspace().credentials.forget()
    return redirect(url_for('routes.index'))


@routes_bp.route('/upload', methods=['POST'], endpoint='upload_file')
@login_required
def upload_file():
    files = [f for f in request.files.getlist('file') if f and f.filename]
    if len(files) != 1:
        flash('Select exactly one PDF, JPG or PNG file.')
        return redirect(url_for('routes.index'))
    try:
        selected = select_file(files[0])
        _workspace().select_file(selected)
        current_app.logger.info(f"Selected {selected.filename} ({selected.content_type}, {len(selected.data)} bytes)")
    except (UnsupportedFileType, WorkspaceBusy) as e:
        current_app.logger.warning(f"Upload rejected: {e}")
        flash(str(e))
    return redirect(url_for('routes.index'))


@routes_bp.route('/clear', methods=['POST'], endpoint='clear_file')
@login_required
def clear_file():
    try:
        _workspace().clear_selection()
    except WorkspaceBusy as e:
        flash(str(e))
    return redirect(url_for('routes.index'))


@routes_bp.route('/process', methods=['POST'], endpoint='process_invoice')
@login_required
def process_invoice():
    workspace = _workspace()
    if not workspace.process(workspace.credentials.client):
        flash('Nothing to process right now.')
    return redirect(url_for('routes.index'))


@routes_bp.route('/records', methods=['POST'], endpoint='save_records')
@login_required
def save_records():
    _workspace().update_records(rows_from_form(request.form))
    flash('Changes saved.')
    return redirect(url_for('routes.index'))


@routes_bp.route('/export', endpoint='export_file')
@login_required
def export_file():
    view = _workspace().snapshot()
    if view['status']['status'] == 'processing':
        flash('Export is unavailable while an invoice is being processed.')
        return redirect(url_for('routes.index'))
    data = export_records(view['records'])
    current_app.logger.info(f"Exporting {len(view['records'])} record(s)")
    return send_file(
        io.BytesIO(data),
        as_attachment=True,
        download_name=export_filename(),
        mimetype=XLSX_MIME_TYPE,
    )


@routes_bp.route('/api/status', endpoint='api_status')
@login_required
def api_status():
    return jsonify({'success': True, 'status': _workspace().snapshot()['status']})


@routes_bp.route('/api/process', methods=['POST'], endpoint='api_process')
@login_required
def api_process():
    workspace = _workspace()
    if not workspace.process(workspace.credentials.client):
        return _api_error('No file selected, no valid API key, or an invoice is already being processed', 409)
    return jsonify(build_result_payload(workspace.snapshot()))


@routes_bp.route('/api/records', methods=['GET', 'PUT'], endpoint='api_records')
@login_required
def api_records():
    workspace = _workspace()
    if request.method == 'PUT':
        payload = request.get_json(silent=True)
        rows = payload.get('records') if isinstance(payload, dict) else None
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            return _api_error('Expected {"records": [ {...}, ... ]}', 400)
        workspace.update_records(rows)
    return jsonify(build_result_payload(workspace.snapshot()))


@routes_bp.route('/api/records/<int:index>', methods=['PATCH'], endpoint='api_edit_record')
@login_required
def api_edit_record(index):
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _api_error('Expected {"field": ..., "value": ...}', 400)
    field = payload.get('field')
    try:
        _workspace().apply_edit(index, field, payload.get('value'))
    except KeyError:
        return _api_error(f'Unknown field: {field}', 400)
    except IndexError:
        return _api_error(f'No record at index {index}', 404)
    return jsonify(build_result_payload(_workspace().snapshot()))


@routes_bp.route('/api/health', endpoint='api_health')
def api_health():
    return jsonify({
        'status': 'ok',
        'time': datetime.utcnow().isoformat() + 'Z'
    }), 200
