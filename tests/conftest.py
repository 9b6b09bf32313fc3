"""
Shared fixtures: a Flask app wired to a fake extraction client so no test
talks to an AI provider.
"""

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from llm_wrappers import ExtractionError
from models import InvoiceLineRecord

USER_EMAIL = 'ap@example.com'
USER_PASSWORD = 's3cret-pass'


def sample_records(count=3):
    return [
        InvoiceLineRecord(
            invoice_number='INV-10023',
            invoice_date='2025-09-30',
            vendor_name='Contoso Pty Ltd',
            customer_name='Ammons DataLabs',
            description=f'Item {i}',
            quantity=float(i),
            unit='each',
            unit_price=10.0,
            tax_rate=0.1,
            total_price=10.0 * i,
            currency='AUD',
        )
        for i in range(1, count + 1)
    ]


class FakeExtractionClient:
    """
    Stand-in for ExtractionClient. Keys starting with "good" are accepted:
    "good-empty" extracts nothing, "good-broken" fails, anything else yields 3 records.
    """

    def __init__(self, api_key):
        if not api_key or not api_key.startswith('good'):
            raise ValueError('Invalid API key')
        self.api_key = api_key
        self.calls = []

    def extract(self, selected_file):
        self.calls.append(selected_file)
        if self.api_key == 'good-broken':
            raise ExtractionError('Provider unavailable (503)')
        if self.api_key == 'good-empty':
            return []
        return sample_records()


@pytest.fixture
def app(tmp_path):
    app = create_app(
        test_config={
            'TESTING': True,
            'SECRET_KEY': 'test-secret',
            'CREDENTIAL_DIR': str(tmp_path / 'credentials'),
            'AUTH_USERS': f"{USER_EMAIL}={generate_password_hash(USER_PASSWORD, method='pbkdf2:sha256')}",
        },
        client_factory=FakeExtractionClient,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def logged_in(client):
    r = client.post('/login', data={'email': USER_EMAIL, 'password': USER_PASSWORD})
    assert r.status_code == 302
    return client


@pytest.fixture
def workspace(app, logged_in):
    return app.extensions['workspaces'].get(USER_EMAIL)
