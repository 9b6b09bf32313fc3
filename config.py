import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB max file size
    ALLOWED_EXTENSIONS = {'pdf', 'png', 'jpg', 'jpeg'}
    ALLOWED_MIME_TYPES = {'application/pdf', 'image/jpeg', 'image/png'}

    # Session provider: "email=<werkzeug password hash>;email2=<hash>"
    AUTH_USERS = os.environ.get('AUTH_USERS', '')

    # Credential persistence (one JSON file per user, one fixed key)
    CREDENTIAL_DIR = os.environ.get('CREDENTIAL_DIR') or os.path.join('instance', 'credentials')
    CREDENTIAL_STORAGE_KEY = 'llm-api-key'

    # LLM Settings
    LLM_PROVIDER = os.environ.get('LLM_PROVIDER', 'mistral')
    MISTRAL_MODEL = os.environ.get('MISTRAL_MODEL', 'pixtral-12b-latest')
    OCR_MODEL = "mistral-ocr-latest"
    OPENROUTER_MODEL = os.environ.get('OPENROUTER_MODEL', 'google/gemini-flash-1.5')
    OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
    GEMINI_MODEL = os.environ.get('GEMINI_MODEL', 'gemini-2.0-flash')

    # Export
    EXPORT_FILENAME_PREFIX = 'invoice-data'
