"""
Extraction Cache

One directory per video fingerprint under a cache root. The fingerprint is
derived from the absolute path and modification time only, so touching the
file invalidates its entry without reading any of its bytes.

Known weak spots of that policy: a byte-identical file at a new path gets a
fresh entry, and a content-changing copy that preserves mtime keeps the old
one.
"""

import hashlib
import shutil
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Optional, Union
from rich.console import Console

console = Console(stderr=True)

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "framefarm"
DEFAULT_MAX_AGE_DAYS = 7


def video_fingerprint(video_path: Union[str, Path]) -> str:
    """
    Cache key for a video: md5 of absolute path + mtime in milliseconds.

    Returns:
        16-character hex string
    """
    path = Path(video_path).resolve()
    mtime_ms = path.stat().st_mtime_ns // 1_000_000
    digest = hashlib.md5(f"{path}{mtime_ms}".encode("utf-8")).hexdigest()
    return digest[:16]


@dataclass
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class ExtractionCache:
    """Fingerprint-addressed thumbnail directories under a shared root."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root) if root else DEFAULT_CACHE_DIR
        self._locks: Dict[str, _KeyLock] = {}
        self._locks_guard = threading.Lock()

    def cache_dir_for(self, fingerprint: str) -> Path:
        """Directory for a fingerprint, created on demand."""
        cache_dir = self.root / fingerprint
        cache_dir.mkdir(parents=True, exist_ok=True)
        return cache_dir

    def dir_for_video(self, video_path: Path) -> Path:
        return self.cache_dir_for(video_fingerprint(video_path))

    @contextmanager
    def lock_for(self, fingerprint: str) -> Iterator[threading.Lock]:
        """
        Hold the per-fingerprint lock for the duration of a with-block.

        Overlapping extractions of the same unmodified video run one after the
        other. The entry is dropped once no caller holds or waits on it, so
        the table stays as small as the number of videos in flight.
        """
        with self._locks_guard:
            entry = self._locks.get(fingerprint)
            if entry is None:
                entry = _KeyLock()
                self._locks[fingerprint] = entry
            entry.users += 1

        try:
            with entry.lock:
                yield entry.lock
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[fingerprint]

    def cleanup_stale(self, max_age_days: float = DEFAULT_MAX_AGE_DAYS) -> int:
        """
        Remove cache directories not modified within max_age_days.

        Never called during extraction; run it as a separate maintenance step.

        Returns:
            Number of directories removed
        """
        if not self.root.exists():
            return 0

        cutoff = time.time() - max_age_days * 24 * 60 * 60
        removed = 0

        for entry in self.root.iterdir():
            if not entry.is_dir():
                continue
            if entry.stat().st_mtime < cutoff:
                shutil.rmtree(entry, ignore_errors=True)
                removed += 1

        if removed > 0:
            console.print(f"[dim]Removed {removed} stale cache directories from {self.root}[/dim]")

        return removed
