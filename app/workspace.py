import logging
import os
import threading
from typing import Any, Callable, Dict, List, Optional

from werkzeug.utils import secure_filename

from app.services import apply_cell_edit, replace_records
from credential_store import CredentialStore, JsonKeyValueStore
from llm_wrappers import ExtractionClient
from models import ProcessingStatus, SelectedFile

logger = logging.getLogger(__name__)


class WorkspaceBusy(RuntimeError):
    pass


class Workspace:
    """
    Per-user working state: the selected file, the processing status and the
    extracted records. All mutations go through these methods under one lock;
    the provider call itself runs outside it.
    """

    def __init__(self, credentials: CredentialStore):
        self.credentials = credentials
        self._lock = threading.Lock()
        self.selected_file: Optional[SelectedFile] = None
        self.status = ProcessingStatus.idle()
        self.records: List[Dict[str, Any]] = []
        self.source_file: Optional[str] = None

    def select_file(self, selected: Optional[SelectedFile]) -> None:
        with self._lock:
            if self.status.is_processing:
                raise WorkspaceBusy('An invoice is being processed; wait for it to finish.')
            self.selected_file = selected
            self.records = []
            self.source_file = None
            self.status = ProcessingStatus.idle()

    def clear_selection(self) -> None:
        self.select_file(None)

    def process(self, client: Optional[ExtractionClient]) -> bool:
        """
        Run one extraction for the selected file. Returns False without doing
        anything when there is no file, no client, or a run is in flight.
        """
        with self._lock:
            if self.selected_file is None or client is None or self.status.is_processing:
                return False
            selected = self.selected_file
            self.status = ProcessingStatus.processing()

        try:
            extracted = client.extract(selected)
        except Exception as e:
            logger.exception(f"Error processing invoice {selected.filename}")
            with self._lock:
                self.records = []
                self.source_file = None
                self.status = ProcessingStatus.failed(str(e))
            return True

        with self._lock:
            self.records = [record.model_dump() for record in extracted]
            self.source_file = selected.filename
            self.status = ProcessingStatus.completed(len(self.records))
        return True

    def update_records(self, rows) -> List[Dict[str, Any]]:
        with self._lock:
            self.records = replace_records(rows)
            return list(self.records)

    def apply_edit(self, index: int, field: str, value: Any) -> List[Dict[str, Any]]:
        with self._lock:
            self.records = apply_cell_edit(self.records, index, field, value)
            return list(self.records)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            selected = self.selected_file
            return {
                'status': self.status.model_dump(),
                'selected_file': None if selected is None else {
                    'filename': selected.filename,
                    'content_type': selected.content_type,
                    'size': len(selected.data),
                },
                'source_file': self.source_file,
                'records': [dict(r) for r in self.records],
            }


class WorkspaceRegistry:
    """One Workspace per signed-in user, created on first use."""

    def __init__(self, credential_dir: str, client_factory: Callable[[str], ExtractionClient] = ExtractionClient):
        self.credential_dir = credential_dir
        self.client_factory = client_factory
        self._lock = threading.Lock()
        self._workspaces: Dict[str, Workspace] = {}

    def _credential_path(self, email: str) -> str:
        return os.path.join(self.credential_dir, f"{secure_filename(email) or 'user'}.json")

    def get(self, email: str) -> Workspace:
        with self._lock:
            workspace = self._workspaces.get(email)
            if workspace is None:
                store = CredentialStore(JsonKeyValueStore(self._credential_path(email)), self.client_factory)
                if store.load() is False:
                    logger.warning(f"Saved API key for {email} was rejected; asking for a new one")
                workspace = Workspace(store)
                self._workspaces[email] = workspace
            return workspace

    def discard(self, email: str) -> None:
        with self._lock:
            self._workspaces.pop(email, None)
