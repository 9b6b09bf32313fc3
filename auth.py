import logging
from functools import wraps
from typing import Dict, Optional

from flask import current_app, flash, redirect, request, session, url_for
from werkzeug.security import check_password_hash

logger = logging.getLogger(__name__)

SESSION_USER_KEY = 'user_email'


def parse_users(raw: str) -> Dict[str, str]:
    """Parse "email=hash;email2=hash2" into a mapping of lowercased email to password hash."""
    users = {}
    for entry in (raw or '').split(';'):
        entry = entry.strip()
        if not entry or '=' not in entry:
            continue
        email, pw_hash = entry.split('=', 1)
        users[email.strip().lower()] = pw_hash.strip()
    return users


def authenticate(email: str, password: str) -> bool:
    users = parse_users(current_app.config.get('AUTH_USERS', ''))
    if not users:
        logger.warning("No AUTH_USERS configured; all logins will be refused")
    pw_hash = users.get((email or '').strip().lower())
    return bool(pw_hash) and check_password_hash(pw_hash, password or '')


def login_user(email: str) -> None:
    session.clear()
    session[SESSION_USER_KEY] = email.strip().lower()


def logout_user() -> Optional[str]:
    email = session.pop(SESSION_USER_KEY, None)
    session.clear()
    return email


def get_current_user() -> Optional[Dict[str, str]]:
    email = session.get(SESSION_USER_KEY)
    if not email:
        return None
    return {'email': email}


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if get_current_user() is None:
            if request.path.startswith('/api/'):
                return {'success': False, 'errors': ['Authentication required']}, 401
            flash('Please sign in to continue.')
            return redirect(url_for('routes.login', next=request.path))
        return view(*args, **kwargs)
    return wrapped
