"""JSON persistence for season weight histories.

One file per season holds the full append-only history. Writes are atomic:

    1. Serialize the new history to weights_<season>.json.tmp
    2. os.replace() the temp file over weights_<season>.json

A crash before step 2 leaves the previous file intact; orphaned temp files
are removed on the next start. Appends for the same season are serialized
by a per-season lock shared by every store pointing at the same directory.
Different seasons never contend.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Optional

from src.weights.history import WeightChange

logger = logging.getLogger(__name__)

STORE_FORMAT_VERSION = 1

_season_locks: dict[tuple[str, int], threading.Lock] = {}
_season_locks_guard = threading.Lock()


def _season_lock(store_dir: Path, season: int) -> threading.Lock:
    key = (str(store_dir.resolve()), season)
    with _season_locks_guard:
        if key not in _season_locks:
            _season_locks[key] = threading.Lock()
        return _season_locks[key]


class WeightStoreError(Exception):
    """Raised when weight history cannot be read or written."""

    pass


class WeightStore:
    """File-backed, season-keyed weight history."""

    def __init__(self, store_dir: str | Path = "data/weights"):
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self._cleanup_orphaned_tmp()

    def _cleanup_orphaned_tmp(self):
        """Remove temp files left by interrupted writes."""
        for tmp_file in self.store_dir.glob("weights_*.json.tmp"):
            logger.warning(f"Cleaning orphaned temp file: {tmp_file}")
            tmp_file.unlink()

    def _season_path(self, season: int) -> Path:
        return self.store_dir / f"weights_{season}.json"

    def _read(self, season: int) -> list[WeightChange]:
        path = self._season_path(season)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text())
            return [WeightChange.from_dict(entry) for entry in data["history"]]
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise WeightStoreError(f"Cannot read weight history {path}: {e}") from e

    def _write(self, season: int, history: list[WeightChange]) -> None:
        path = self._season_path(season)
        tmp_path = path.with_name(path.name + ".tmp")
        payload = {
            "format_version": STORE_FORMAT_VERSION,
            "season": season,
            "history": [entry.to_dict() for entry in history],
        }
        try:
            tmp_path.write_text(json.dumps(payload, indent=2, default=str))
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise WeightStoreError(f"Cannot write weight history {path}: {e}") from e

    def history(self, season: int) -> list[WeightChange]:
        """All entries for a season, oldest first."""
        return self._read(season)

    def latest(self, season: int) -> Optional[WeightChange]:
        entries = self._read(season)
        return entries[-1] if entries else None

    def append(
        self,
        season: int,
        build_entry: Callable[[Optional[WeightChange]], Optional[WeightChange]],
    ) -> Optional[WeightChange]:
        """Append one entry under the season lock.

        build_entry receives the current latest entry (or None) and returns
        the entry to append, or None to leave the history untouched (the
        current latest entry is then returned). If it raises, nothing is
        written.

        Raises:
            WeightStoreError: If the history cannot be read or written
        """
        with _season_lock(self.store_dir, season):
            entries = self._read(season)
            latest = entries[-1] if entries else None
            entry = build_entry(latest)
            if entry is None:
                return latest
            if entry.season != season:
                raise ValueError(
                    f"Entry for season {entry.season} appended to season {season}"
                )
            self._write(season, entries + [entry])

        logger.debug(f"{season}: stored weight version {entry.version} ({entry.source})")
        return entry

    def seasons(self) -> list[int]:
        """Seasons with stored history."""
        seasons = []
        for path in self.store_dir.glob("weights_*.json"):
            suffix = path.stem.split("_", 1)[1]
            if suffix.isdigit():
                seasons.append(int(suffix))
        return sorted(seasons)
