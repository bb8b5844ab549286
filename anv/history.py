import json
import logging
import math
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from .config import HISTORY_FILE
from .errors import CorruptHistory
from .models import HistoryEntry, TranslationMode

logger = logging.getLogger(__name__)

_ENTRIES = TypeAdapter(List[HistoryEntry])


def _legacy_playable(entry) -> bool:
    if not isinstance(entry, dict) or entry.get("is_manga"):
        return False
    if entry.get("translation") not in ("sub", "dub"):
        return False
    try:
        return math.isfinite(float(str(entry.get("episode")).strip()))
    except ValueError:
        return False


class HistoryFile:
    """Entries ordered by recency, most recent first."""

    def __init__(self, entries: Optional[List[HistoryEntry]] = None):
        self.entries = list(entries or [])

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def find(self, series_id: str, translation: TranslationMode) -> Optional[HistoryEntry]:
        for entry in self.entries:
            if entry.series_id == series_id and entry.translation_mode == translation:
                return entry
        return None

    def upsert(self, entry: HistoryEntry):
        self.entries = [e for e in self.entries if e.key != entry.key]
        self.entries.insert(0, entry)

    def recent(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        ordered = sorted(self.entries, key=lambda e: e.updated_at, reverse=True)
        return ordered if limit is None else ordered[:limit]

    def to_json(self) -> list:
        return [e.to_json() for e in self.entries]


class HistoryStore:

    def __init__(self, path=None):
        self.path = Path(path or HISTORY_FILE)

    def _read(self) -> HistoryFile:
        if not self.path.exists():
            return HistoryFile()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            raise CorruptHistory(self.path, str(e)) from e
        except json.JSONDecodeError as e:
            raise CorruptHistory(self.path, f"invalid JSON ({e.msg})") from e

        # Legacy layout: {"entries": [...]}, which could also hold manga chapters.
        if isinstance(raw, dict) and isinstance(raw.get("entries"), list):
            legacy = raw["entries"]
            raw = [e for e in legacy if _legacy_playable(e)]
            if len(raw) != len(legacy):
                logger.info("Skipped %d legacy history entries", len(legacy) - len(raw))
        if not isinstance(raw, list):
            raise CorruptHistory(self.path, "expected a JSON array")

        try:
            return HistoryFile(_ENTRIES.validate_python(raw))
        except ValidationError as e:
            raise CorruptHistory(self.path, f"{e.error_count()} invalid field(s)") from e

    def _set_aside(self):
        broken = self.path.with_name(self.path.name + ".broken")
        try:
            os.replace(self.path, broken)
            logger.warning("Moved unreadable history to %s", broken)
        except OSError as e:
            logger.warning("Could not move unreadable history aside: %s", e)

    def load(self, strict: bool = False) -> HistoryFile:
        try:
            return self._read()
        except CorruptHistory as e:
            if strict:
                raise
            logger.warning("%s; starting with empty history", e)
            self._set_aside()
            return HistoryFile()

    def save(self, history: HistoryFile):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(history.to_json(), f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise

    def find_entry(self, series_id: str, translation: TranslationMode) -> Optional[HistoryEntry]:
        return self.load().find(series_id, translation)

    def upsert(self, entry: HistoryEntry) -> HistoryFile:
        history = self.load()
        history.upsert(entry)
        self.save(history)
        logger.debug("Recorded %s [%s] episode %s", entry.series_id,
                     entry.translation_mode.value, entry.episode_label)
        return history

    def list_recent(self, limit: int = 20) -> List[HistoryEntry]:
        return self.load().recent(limit)
