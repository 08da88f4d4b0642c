"""Status file writer for Home Assistant integration"""

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from core.models import SyncResult


def _status_name(result: SyncResult) -> str:
    if result.cancelled:
        return "cancelled"
    return "success" if result.success else "failed"


def write_status(result: SyncResult, status_file: Path) -> bool:
    data = {
        "status": _status_name(result),
        "last_sync_time": datetime.now(timezone.utc).isoformat(),
        "users_synced": result.users_synced,
        "movies_collected": result.movies_collected,
        "episodes_collected": result.episodes_collected,
        "movies_watched": result.movies_watched,
        "movies_unwatched": result.movies_unwatched,
        "episodes_watched": result.episodes_watched,
        "episodes_unwatched": result.episodes_unwatched,
        "last_error": result.errors[-1] if result.errors else None,
    }
    return _atomic_write(status_file, data)


def write_running_status(status_file: Path) -> bool:
    data = {
        "status": "running",
        "last_sync_time": datetime.now(timezone.utc).isoformat(),
        "users_synced": 0,
        "movies_collected": 0,
        "episodes_collected": 0,
        "movies_watched": 0,
        "movies_unwatched": 0,
        "episodes_watched": 0,
        "episodes_unwatched": 0,
        "last_error": None,
    }
    return _atomic_write(status_file, data)


def _atomic_write(path: Path, data: dict) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".status_", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, path)
            return True
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
    except Exception:
        return False
