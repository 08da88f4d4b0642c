#!/usr/bin/env python3
"""Trakt Library Sync - Add-on Entry Point"""

import fcntl
import logging
import os
import signal
import sys
import threading
import time
from pathlib import Path

from clients.library import JsonLibrary, LibraryLoadError
from clients.trakt import TraktClient
from core.models import SyncCancelledError, SyncResult
from core.status import write_status, write_running_status
from core.sync_engine import LibrarySyncTask
from core.task import ScheduledTask
from core.token_store import TokenStore

DATA_DIR = Path(os.environ.get("DATA_DIR", "/config/trakt_library_sync"))
LOCK_FILE = DATA_DIR / ".sync.lock"
LOG_FILE = DATA_DIR / "trakt_library_sync.log"
STATUS_FILE = DATA_DIR / "sync_status.json"
TOKEN_FILE = DATA_DIR / ".trakt_tokens.json"

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.FileHandler(LOG_FILE, encoding="utf-8"),
            logging.StreamHandler()
        ]
    )


def acquire_lock() -> int | None:
    try:
        # Check for stale lock (older than 30 min = likely orphaned)
        if LOCK_FILE.exists():
            age = time.time() - LOCK_FILE.stat().st_mtime
            if age > 1800:
                logger.warning(f"Removing stale lock file (age: {age:.0f}s)")
                LOCK_FILE.unlink(missing_ok=True)

        fd = os.open(str(LOCK_FILE), os.O_CREAT | os.O_RDWR)
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        os.write(fd, f"{os.getpid()}\n".encode())
        return fd
    except OSError:
        return None


def release_lock(fd: int) -> None:
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
        LOCK_FILE.unlink(missing_ok=True)
    except OSError as e:
        logger.debug(f"Lock release failed: {e}")


def load_config() -> dict:
    required = ["TRAKT_CLIENT_ID", "TRAKT_CLIENT_SECRET"]
    config = {}
    missing = []

    for var in required:
        value = os.environ.get(var)
        if value:
            config[var] = value
        else:
            missing.append(var)

    if missing:
        logger.error(f"Missing config: {', '.join(missing)}")
        sys.exit(1)

    config["LIBRARY_FILE"] = Path(os.environ.get("LIBRARY_FILE", str(DATA_DIR / "library.json")))
    return config


def install_cancel_handlers(cancel: threading.Event) -> None:
    def handle(signum, frame):
        logger.warning(f"Received signal {signum}, cancelling sync...")
        cancel.set()

    signal.signal(signal.SIGTERM, handle)
    signal.signal(signal.SIGINT, handle)


def report_progress(percent: float) -> None:
    logger.debug(f"Progress: {percent:.1f}%")


def main() -> int:
    setup_logging()

    lock_fd = acquire_lock()
    if lock_fd is None:
        logger.warning("Another sync running, exiting")
        return 0

    try:
        write_running_status(STATUS_FILE)
        config = load_config()

        try:
            library = JsonLibrary(config["LIBRARY_FILE"])
        except LibraryLoadError as e:
            logger.error(str(e))
            write_status(SyncResult.failure(str(e)), STATUS_FILE)
            return 1

        tokens = TokenStore(TOKEN_FILE)
        logger.debug(f"Token store holds {len(tokens)} account(s)")
        trakt = TraktClient(config["TRAKT_CLIENT_ID"], config["TRAKT_CLIENT_SECRET"], tokens)
        task: ScheduledTask = LibrarySyncTask(library, trakt, tokens)

        cancel = threading.Event()
        install_cancel_handlers(cancel)

        logger.info(f"Starting task: {task.name}")
        result = task.execute(report_progress, cancel)
        write_status(result, STATUS_FILE)

        if result.success:
            logger.info(
                f"Sync completed: {result.users_synced} user(s), "
                f"+{result.movies_collected} movies, +{result.episodes_collected} episodes collected"
            )
            return 0
        else:
            logger.warning(f"Sync errors: {result.errors}")
            return 1

    except SyncCancelledError as e:
        logger.warning(f"Sync cancelled: {e}")
        result = SyncResult.failure(str(e))
        result.cancelled = True
        write_status(result, STATUS_FILE)
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        write_status(SyncResult.failure(f"Unexpected error: {e}"), STATUS_FILE)
        return 1
    finally:
        release_lock(lock_fd)


if __name__ == "__main__":
    sys.exit(main())
