import math
import mimetypes
import re
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app as app
from werkzeug.utils import secure_filename

from models import NUMERIC_FIELDS, RECORD_FIELDS, SelectedFile


class UnsupportedFileType(ValueError):
    pass


def allowed_file(filename: str) -> bool:
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in app.config['ALLOWED_EXTENSIONS']


def resolve_media_type(filename: str, declared: Optional[str]) -> Optional[str]:
    """
    Return the supported media type for an upload, or None.
    The declared type wins when it is supported; otherwise fall back to the extension.
    """
    supported = app.config['ALLOWED_MIME_TYPES']
    declared = (declared or '').split(';', 1)[0].strip().lower()
    if declared in supported:
        return declared
    if not allowed_file(filename):
        return None
    guessed = mimetypes.guess_type(filename)[0]
    return guessed if guessed in supported else None


def select_file(file_storage) -> SelectedFile:
    """
    Accept exactly one uploaded PDF/JPEG/PNG. The contents are not inspected.
    """
    if file_storage is None or not file_storage.filename:
        raise UnsupportedFileType('No file selected. Make sure to select a PDF/JPG/PNG file.')
    filename = secure_filename(file_storage.filename) or 'invoice'
    media_type = resolve_media_type(file_storage.filename, file_storage.mimetype)
    if media_type is None:
        raise UnsupportedFileType(f"Unsupported file type: {file_storage.filename}")
    data = file_storage.read()
    if not data:
        raise UnsupportedFileType(f"File is empty: {file_storage.filename}")
    return SelectedFile(filename=filename, content_type=media_type, data=data)


def coerce_cell(field: str, value: Any) -> Any:
    """
    Numeric columns become floats when the text parses; anything else is kept as typed.
    """
    if field not in NUMERIC_FIELDS or not isinstance(value, str):
        return value
    try:
        number = float(value.strip().replace(',', ''))
    except ValueError:
        return value
    # nan/inf stay as typed
    return number if math.isfinite(number) else value


def apply_cell_edit(records: List[Dict[str, Any]], index: int, field: str, value: Any) -> List[Dict[str, Any]]:
    """Return a new record list with one cell replaced."""
    if field not in RECORD_FIELDS:
        raise KeyError(field)
    if index < 0 or index >= len(records):
        raise IndexError(index)
    updated = [dict(record) for record in records]
    updated[index][field] = coerce_cell(field, value)
    return updated


def replace_records(rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Normalise a full table submission into records in canonical field order."""
    return [
        {field: coerce_cell(field, row.get(field)) for field in RECORD_FIELDS}
        for row in rows
    ]


def rows_from_form(form) -> List[Dict[str, Any]]:
    """
    Rebuild table rows from inputs named ``rows-<index>-<field>``.
    Rows come back in index order; unknown fields are ignored.
    """
    rows: Dict[int, Dict[str, Any]] = {}
    for name, value in form.items():
        m = re.match(r'^rows-(\d+)-(\w+)$', name)
        if not m or m.group(2) not in RECORD_FIELDS:
            continue
        rows.setdefault(int(m.group(1)), {})[m.group(2)] = value
    return [rows[i] for i in sorted(rows)]


def build_result_payload(workspace_view: Dict[str, Any]) -> Dict[str, Any]:
    records = workspace_view['records']
    total_amount = sum(r['total_price'] for r in records if isinstance(r.get('total_price'), (int, float)))
    return {
        'success': True,
        'status': workspace_view['status'],
        'selected_file': workspace_view['selected_file'],
        'source_file': workspace_view['source_file'],
        'records': records,
        'fields': RECORD_FIELDS,
        'stats': {
            'total_line_items': len(records),
            'total_amount': total_amount,
        },
    }
