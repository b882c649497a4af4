"""
Pooldoc Cache Steward

Keeps the document directories from growing without bound by deleting
report documents older than a retention window, and reports what is
currently stored for the CLI status view.

Only *.pdf files directly inside each directory are considered; nothing is
recursed into. Deletion is by age alone, so a sweep can run next to a build
or download that is writing a fresh file.

Usage:
    from core.cache_steward import CacheSteward, sweep

    deleted = await sweep("data/cache", max_age_seconds=7 * 86400)

    steward = CacheSteward(["data/documents", "data/cache"], retention_days=7)
    await steward.sweep()
    print(steward.get_status())
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path

from tools.pool.models import PDF_EXTENSION, DocumentArtifact

logger = logging.getLogger("pooldoc.cache_steward")

DEFAULT_RETENTION_DAYS = 7
SECONDS_PER_DAY = 86400


def _list_documents(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.glob(f"*{PDF_EXTENSION}") if p.is_file())


def _delete_if_expired(path: Path, max_age_seconds: float, now: float) -> bool:
    """Delete path when strictly older than max_age_seconds. True if deleted."""
    age = now - path.stat().st_mtime
    if age <= max_age_seconds:
        return False
    path.unlink()
    logger.info("Swept %s (%.1f days old)", path.name, age / SECONDS_PER_DAY)
    return True


async def sweep(directory: str | Path, max_age_seconds: float, now: float | None = None) -> int:
    """Delete expired documents in one directory.

    Args:
        directory:       Directory to scan. A missing directory is not an error.
        max_age_seconds: Files older than this are deleted; exactly this old is kept.
        now:             Reference epoch time (defaults to the current time).

    Returns:
        Number of files actually deleted.
    """
    directory = Path(directory)
    now = time.time() if now is None else now

    candidates = await asyncio.to_thread(_list_documents, directory)
    deleted = 0
    for path in candidates:
        try:
            if await asyncio.to_thread(_delete_if_expired, path, max_age_seconds, now):
                deleted += 1
        except FileNotFoundError:
            logger.debug("Already gone: %s", path.name)
        except OSError as e:
            logger.warning("Could not sweep %s: %s", path, e)

    if deleted:
        logger.info("Sweep of %s removed %d document(s)", directory, deleted)
    return deleted


class CacheSteward:
    """Retention and status for the document directories.

    Args:
        directories:    Directories holding built, downloaded or shared documents.
        retention_days: Age beyond which a document is swept.
    """

    def __init__(self, directories: list[str | Path], retention_days: float = DEFAULT_RETENTION_DAYS):
        self.directories = [Path(d) for d in directories]
        self.retention_days = retention_days
        self._last_sweep: dict | None = None

    @property
    def max_age_seconds(self) -> float:
        return self.retention_days * SECONDS_PER_DAY

    async def sweep(self, now: float | None = None) -> int:
        """Sweep every directory. Returns the total number deleted."""
        total = 0
        for directory in self.directories:
            total += await sweep(directory, self.max_age_seconds, now=now)
        self._last_sweep = {
            "deleted": total,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        return total

    def list_artifacts(self) -> list[DocumentArtifact]:
        """All stored documents, newest first."""
        artifacts = []
        for directory in self.directories:
            for path in _list_documents(directory):
                try:
                    artifacts.append(DocumentArtifact.from_path(path))
                except OSError as e:
                    logger.debug("Skipping %s: %s", path, e)
        return sorted(artifacts, key=lambda a: a.modified_at, reverse=True)

    def get_status(self) -> dict:
        """Return storage status for the CLI.

        Returns:
            {"count": int, "total_size": int, "oldest": {...} | None,
             "last_sweep": {...} | None, "retention_days": float,
             "documents": [...]}
        """
        artifacts = self.list_artifacts()
        return {
            "count": len(artifacts),
            "total_size": sum(a.size for a in artifacts),
            "oldest": artifacts[-1].to_dict() if artifacts else None,
            "last_sweep": self._last_sweep,
            "retention_days": self.retention_days,
            "documents": [a.to_dict() for a in artifacts],
        }

    @staticmethod
    def human_size(size_bytes: float) -> str:
        """Format byte count as human-readable string."""
        for unit in ("B", "KB", "MB", "GB"):
            if size_bytes < 1024:
                return f"{size_bytes:.1f} {unit}"
            size_bytes /= 1024
        return f"{size_bytes:.1f} TB"
