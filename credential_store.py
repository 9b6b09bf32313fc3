import json
import logging
import os
import tempfile
from typing import Callable, Dict, Optional

from config import Config
from llm_wrappers import ExtractionClient

logger = logging.getLogger(__name__)


class JsonKeyValueStore:
    """Durable key-value slots kept in a single JSON file."""

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except Exception:
            os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)


class CredentialStore:
    """Holds the provider API key and the client it was validated with.

    Validation is a one-time construction check: if ``client_factory`` accepts
    the key, the client is kept and the key persisted under a fixed name.
    A rejected key leaves any earlier persisted key untouched.
    """

    def __init__(self, storage: JsonKeyValueStore,
                 client_factory: Callable[[str], ExtractionClient] = ExtractionClient,
                 storage_key: str = Config.CREDENTIAL_STORAGE_KEY):
        self.storage = storage
        self.client_factory = client_factory
        self.storage_key = storage_key
        self.is_valid: Optional[bool] = None
        self.client: Optional[ExtractionClient] = None

    def set_credential(self, raw: str) -> bool:
        try:
            client = self.client_factory(raw)
        except Exception as e:
            logger.error(f"Failed to initialize AI client: {e}")
            self.is_valid = False
            self.client = None
            return False

        self.client = client
        self.is_valid = True
        self.storage.set(self.storage_key, raw)
        return True

    def load(self) -> Optional[bool]:
        """Re-validate a persisted key, if any. Returns None when nothing is stored."""
        saved = self.storage.get(self.storage_key)
        if not saved:
            return None
        return self.set_credential(saved)

    def forget(self) -> None:
        self.storage.delete(self.storage_key)
        self.client = None
        self.is_valid = None
