"""File-based storage implementation."""

import json
import os
import tempfile
import threading

from core.errors import StoreUnavailable
from core.interfaces import RowStore
from core.models import Row


class FileStorage(RowStore):
    """File-based storage implementation.

    One JSON document per user maps row keys to {fields, version}. Writes
    go through a temp file and os.replace, and a process-wide lock makes
    conditional updates atomic within one process only.
    """

    _lock = threading.Lock()

    def __init__(self, config_file: str = None, state_dir: str = None):
        self.config_file = config_file or os.environ.get(
            'DUSHI_CONFIG', os.path.expanduser('~/.config/dushi/config.json')
        )
        # Project root is one level up from server/
        project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        self.state_dir = state_dir or os.environ.get('DUSHI_STATE_DIR', project_root)

    def _get_state_file(self, user_id: str) -> str:
        """Get state file path for a user."""
        return os.path.join(self.state_dir, f'dushi_rows_{user_id}.json')

    def _load_rows(self, user_id: str) -> dict:
        state_file = self._get_state_file(user_id)
        if not os.path.exists(state_file):
            return {}
        try:
            with open(state_file, 'r') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise StoreUnavailable(f"Could not read rows for {user_id}: {e}") from e

    def _save_rows(self, user_id: str, rows: dict) -> None:
        state_file = self._get_state_file(user_id)
        try:
            os.makedirs(self.state_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.state_dir, suffix='.tmp')
            with os.fdopen(fd, 'w') as f:
                json.dump(rows, f, indent=2)
            os.replace(tmp_path, state_file)
        except OSError as e:
            raise StoreUnavailable(f"Could not write rows for {user_id}: {e}") from e

    def load_config(self) -> dict:
        if not os.path.exists(self.config_file):
            return {}
        with open(self.config_file, 'r') as f:
            return json.load(f)

    def get(self, user_id: str, key: str) -> Row | None:
        with self._lock:
            entry = self._load_rows(user_id).get(key)
        if entry is None:
            return None
        return Row(key, entry['fields'], entry['version'])

    def upsert(self, user_id: str, key: str, fields: dict) -> Row:
        with self._lock:
            rows = self._load_rows(user_id)
            version = rows.get(key, {}).get('version', 0) + 1
            rows[key] = {'fields': fields, 'version': version}
            self._save_rows(user_id, rows)
        return Row(key, fields, version)

    def conditional_update(self, user_id: str, key: str, expected_version: int,
                           fields: dict) -> bool:
        with self._lock:
            rows = self._load_rows(user_id)
            current = rows.get(key, {}).get('version', 0)
            if current != expected_version:
                return False
            rows[key] = {'fields': fields, 'version': current + 1}
            self._save_rows(user_id, rows)
        return True

    def list_rows(self, user_id: str, prefix: str) -> list[Row]:
        with self._lock:
            rows = self._load_rows(user_id)
        return [Row(key, entry['fields'], entry['version'])
                for key, entry in sorted(rows.items()) if key.startswith(prefix)]

    def list_users(self) -> list[str]:
        """List all user IDs that have stored rows."""
        users = []
        if os.path.exists(self.state_dir):
            for filename in os.listdir(self.state_dir):
                if filename.startswith('dushi_rows_') and filename.endswith('.json'):
                    users.append(filename[len('dushi_rows_'):-len('.json')])
        return sorted(users)
