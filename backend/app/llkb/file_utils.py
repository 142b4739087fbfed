"""
File Utilities - crash-safe JSON persistence

All document mutations go through update_json_with_lock():
    acquire {path}.lock -> read -> transform -> atomic write -> release

Atomic writes go to {path}.tmp.{random} and are renamed over the target, so a
reader (or a crash) never observes a truncated document. A lock older than
STALE_LOCK_THRESHOLD_MS is presumed abandoned and reclaimed.
"""

import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .errors import LockTimeoutError, MigrationError
from .models import SaveResult, UpdateResult, now_iso

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

LOCK_MAX_WAIT_MS = 5000
LOCK_RETRY_INTERVAL_MS = 50
STALE_LOCK_THRESHOLD_MS = 30000


def ensure_dir(dir_path: PathLike) -> None:
    Path(dir_path).mkdir(parents=True, exist_ok=True)


def load_json(file_path: PathLike) -> Optional[Any]:
    """
    Load a JSON document.

    Returns None when the file does not exist. Invalid JSON raises
    json.JSONDecodeError so callers can tell "absent" from "corrupt".
    """
    path = Path(file_path)
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def save_json_atomic(file_path: PathLike, data: Any) -> SaveResult:
    """Write JSON via temp file + rename."""
    path = Path(file_path)
    temp_path = path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex[:12]}")

    try:
        ensure_dir(path.parent)
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
        return SaveResult(success=True)
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Atomic write failed for {path}: {e}")
        try:
            temp_path.unlink()
        except OSError:
            pass
        return SaveResult(success=False, error=str(e))


# ==================== Locking ====================

def _lock_path(file_path: PathLike) -> Path:
    path = Path(file_path)
    return path.with_name(f"{path.name}.lock")


def acquire_lock(file_path: PathLike) -> bool:
    """
    Try once to take the advisory lock for file_path.

    A lock whose mtime is older than the staleness threshold is removed first.
    """
    lock_path = _lock_path(file_path)

    try:
        age_ms = (time.time() - lock_path.stat().st_mtime) * 1000
    except FileNotFoundError:
        age_ms = None
    except OSError:
        return False

    if age_ms is not None:
        if age_ms <= STALE_LOCK_THRESHOLD_MS:
            return False
        logger.warning(f"Reclaiming stale lock {lock_path} ({int(age_ms)}ms old)")
        try:
            lock_path.unlink()
        except FileNotFoundError:
            pass
        except OSError:
            return False

    try:
        ensure_dir(lock_path.parent)
        fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError:
        return False
    except OSError as e:
        logger.debug(f"Lock create failed for {lock_path}: {e}")
        return False

    with os.fdopen(fd, "w") as f:
        f.write(now_iso())
    return True


def release_lock(file_path: PathLike) -> None:
    try:
        _lock_path(file_path).unlink()
    except OSError:
        pass


def wait_for_lock(file_path: PathLike, max_wait_ms: int = LOCK_MAX_WAIT_MS) -> int:
    """
    Block until the lock is held. Returns the number of retries needed.

    Raises LockTimeoutError when the wait limit is exhausted.
    """
    deadline = time.monotonic() + max_wait_ms / 1000
    retries = 0
    while True:
        if acquire_lock(file_path):
            return retries
        if time.monotonic() >= deadline:
            raise LockTimeoutError(str(file_path), max_wait_ms)
        retries += 1
        time.sleep(LOCK_RETRY_INTERVAL_MS / 1000)


def update_json_with_lock(
    file_path: PathLike,
    transform: Callable[[Any], Any],
    default: Optional[Callable[[], Any]] = None,
    max_wait_ms: int = LOCK_MAX_WAIT_MS,
) -> UpdateResult:
    """
    Lock-protected read-modify-write of a JSON document.

    Args:
        file_path: Target document
        transform: Receives the current document (or the default) and returns
                   the new document
        default: Factory for the document when the file is absent; {} if omitted
        max_wait_ms: Lock wait limit

    Returns:
        UpdateResult; a lock timeout, a transform error or a failed write all
        come back as success=False with the reason in `error`.
    """
    try:
        retries = wait_for_lock(file_path, max_wait_ms)
    except LockTimeoutError as e:
        logger.error(f"{e} ({file_path})")
        return UpdateResult(success=False, error=str(e), retries_needed=0)

    try:
        current = load_json(file_path)
        if current is None:
            current = default() if default else {}
        updated = transform(current)
        saved = save_json_atomic(file_path, updated)
        if not saved.success:
            return UpdateResult(success=False, error=saved.error, retries_needed=retries)
        return UpdateResult(success=True, retries_needed=retries)
    except (MigrationError, OSError, ValueError, KeyError, TypeError) as e:
        logger.error(f"Locked update failed for {file_path}: {e}")
        return UpdateResult(success=False, error=str(e), retries_needed=retries)
    finally:
        release_lock(file_path)
