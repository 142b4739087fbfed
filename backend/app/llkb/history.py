"""
History log - append-only, one JSONL file per local calendar day

    {llkb_root}/history/YYYY-MM-DD.jsonl

Events are appended with a plain file append, never a read-modify-write, so
logging never contends with the locked documents. Files are only ever
removed whole by cleanup_old_history_files().
"""

import json
import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import LLKBConfig, resolve_llkb_root
from .file_utils import ensure_dir
from .models import now_iso

logger = logging.getLogger(__name__)

HISTORY_DIRNAME = "history"
DEFAULT_RETENTION_DAYS = 365
PREDICTIVE_PROMPT = "journey-implement"

HistoryEvent = Dict[str, Any]


def format_date(day) -> str:
    return day.strftime("%Y-%m-%d")


def get_history_dir(llkb_root=None) -> Path:
    return resolve_llkb_root(llkb_root) / HISTORY_DIRNAME


def get_history_file_path(day=None, llkb_root=None) -> Path:
    return get_history_dir(llkb_root) / f"{format_date(day or date.today())}.jsonl"


def append_to_history(event: HistoryEvent, llkb_root=None) -> bool:
    """Append one event to today's file. Returns False (and logs) on failure."""
    record = dict(event)
    record.setdefault("timestamp", now_iso())

    history_path = get_history_file_path(llkb_root=llkb_root)
    try:
        ensure_dir(history_path.parent)
        with open(history_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to append to history: {e}")
        return False


def read_history_file(file_path) -> List[HistoryEvent]:
    path = Path(file_path)
    if not path.exists():
        return []

    events = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed history line {path.name}:{line_number}")
    except OSError as e:
        logger.warning(f"Could not read history file {path}: {e}")
    return events


def read_today_history(llkb_root=None) -> List[HistoryEvent]:
    return read_history_file(get_history_file_path(llkb_root=llkb_root))


def count_today_events(
    event_type: str,
    llkb_root=None,
    event_filter: Optional[Callable[[HistoryEvent], bool]] = None,
) -> int:
    return sum(
        1 for e in read_today_history(llkb_root)
        if e.get("event") == event_type and (event_filter is None or event_filter(e))
    )


# ==================== Rate limits ====================

def count_predictive_extractions_today(llkb_root=None) -> int:
    return count_today_events(
        "component_extracted",
        llkb_root,
        lambda e: e.get("prompt") == PREDICTIVE_PROMPT,
    )


def count_journey_extractions_today(journey_id: str, llkb_root=None) -> int:
    return count_today_events(
        "component_extracted",
        llkb_root,
        lambda e: e.get("journeyId") == journey_id,
    )


def is_daily_rate_limit_reached(config: LLKBConfig, llkb_root=None) -> bool:
    return count_predictive_extractions_today(llkb_root) >= config.extraction.max_predictive_per_day


def is_journey_rate_limit_reached(journey_id: str, config: LLKBConfig, llkb_root=None) -> bool:
    return count_journey_extractions_today(journey_id, llkb_root) >= config.extraction.max_predictive_per_journey


# ==================== Retention ====================

def _file_date(path: Path) -> Optional[date]:
    try:
        return datetime.strptime(path.stem, "%Y-%m-%d").date()
    except ValueError:
        return None


def _as_date(value) -> date:
    return value.date() if isinstance(value, datetime) else value


def get_history_files_in_range(start, end, llkb_root=None) -> List[Path]:
    """History files whose date falls within [start, end], oldest first."""
    history_dir = get_history_dir(llkb_root)
    if not history_dir.is_dir():
        return []

    first, last = _as_date(start), _as_date(end)
    files = []
    for path in history_dir.glob("*.jsonl"):
        file_date = _file_date(path)
        if file_date is not None and first <= file_date <= last:
            files.append(path)
    return sorted(files)


def cleanup_old_history_files(retention_days: int = DEFAULT_RETENTION_DAYS, llkb_root=None) -> List[Path]:
    """Delete whole day files older than the retention window. Returns the deleted paths."""
    history_dir = get_history_dir(llkb_root)
    if not history_dir.is_dir():
        return []

    cutoff = date.today() - timedelta(days=retention_days)
    deleted = []
    for path in sorted(history_dir.glob("*.jsonl")):
        file_date = _file_date(path)
        if file_date is None or file_date >= cutoff:
            continue
        try:
            path.unlink()
            deleted.append(path)
        except OSError as e:
            logger.warning(f"Failed to delete history file {path.name}: {e}")

    if deleted:
        logger.info(f"Removed {len(deleted)} history files older than {retention_days} days")
    return deleted
