"""Persisted Trakt OAuth tokens, keyed by linked local user id"""

import json
import logging
import os
import tempfile
from pathlib import Path

from core.models import TraktUser

logger = logging.getLogger(__name__)


class TokenStore:
    def __init__(self, token_file: Path = Path("/config/trakt_library_sync/.trakt_tokens.json")):
        self._file = token_file
        self._tokens: dict[str, dict] = {}
        self._dirty = False
        self._load()

    def _load(self) -> None:
        if not self._file.exists():
            return

        try:
            data = json.loads(self._file.read_text())
            for key, value in data.items():
                if isinstance(value, dict) and value.get("access_token"):
                    self._tokens[key] = value
            logger.debug(f"Loaded {len(self._tokens)} stored tokens")
        except Exception as e:
            logger.warning(f"Token store load failed: {e}")
            self._tokens = {}

    def save(self) -> None:
        if not self._dirty:
            return

        try:
            self._file.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=self._file.parent, prefix=".tokens_", suffix=".tmp")
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(self._tokens, f, indent=2)
                os.replace(temp_path, self._file)
                self._dirty = False
            except Exception:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
        except Exception as e:
            logger.error(f"Token store save failed: {e}")

    def apply(self, user: TraktUser) -> TraktUser:
        """Overlay a stored token onto the user when it is newer than the exported one."""
        entry = self._tokens.get(user.linked_user_id)
        if not entry:
            return user
        if entry.get("expires_at", 0) <= user.expires_at:
            return user
        user.access_token = entry["access_token"]
        user.refresh_token = entry.get("refresh_token", user.refresh_token)
        user.expires_at = entry.get("expires_at", 0)
        return user

    def set(self, user: TraktUser) -> None:
        current = self._tokens.get(user.linked_user_id, {})
        if current.get("access_token") != user.access_token:
            self._tokens[user.linked_user_id] = {
                "access_token": user.access_token,
                "refresh_token": user.refresh_token,
                "expires_at": user.expires_at,
            }
            self._dirty = True
            self.save()

    def __len__(self) -> int:
        return len(self._tokens)
