"""
Deposit deduplication.

The deposit watcher attempts each transaction at most once per run. A
transaction counts as seen as soon as any of its outputs has been observed,
whether or not its claim later succeeds. The store is injected into the
pipeline so a run can be made durable across restarts.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from loguru import logger


@dataclass
class DeduplicationStats:
    """Statistics about deduplication activity."""

    total_processed: int = 0
    duplicates_dropped: int = 0
    unique_txids: int = 0

    @property
    def duplicate_rate(self) -> float:
        """Return the percentage of observations that were duplicates."""
        if self.total_processed == 0:
            return 0.0
        return (self.duplicates_dropped / self.total_processed) * 100


class SeenStore(Protocol):
    def mark_seen(self, txid: str) -> bool: ...

    def __contains__(self, txid: object) -> bool: ...

    def __len__(self) -> int: ...


@dataclass
class SeenTxids:
    """
    Run-scoped, monotonically growing set of attempted txids.

    Example:
        >>> seen = SeenTxids()
        >>> seen.mark_seen("ab" * 32)
        True
        >>> seen.mark_seen("ab" * 32)
        False
    """

    _seen: dict[str, float] = field(default_factory=dict)
    stats: DeduplicationStats = field(default_factory=DeduplicationStats)

    def mark_seen(self, txid: str) -> bool:
        """
        Record ``txid``.

        Returns:
            True if this is the first time the txid is seen, False otherwise.
        """
        key = txid.lower()
        self.stats.total_processed += 1
        if key in self._seen:
            self.stats.duplicates_dropped += 1
            return False
        self._seen[key] = time.time()
        self.stats.unique_txids += 1
        return True

    def __contains__(self, txid: object) -> bool:
        return isinstance(txid, str) and txid.lower() in self._seen

    def __len__(self) -> int:
        return len(self._seen)


class FileSeenTxids(SeenTxids):
    """
    SeenTxids persisted as JSON so attempted deposits survive a restart.

    The file maps txid to the unix time it was first seen.
    """

    def __init__(self, path: Path):
        super().__init__()
        self.path = path
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable seen-txid file {self.path}: {e}")
            return
        if not isinstance(data, dict):
            logger.warning(f"Ignoring seen-txid file {self.path}: expected a JSON object")
            return
        for txid, first_seen in data.items():
            try:
                self._seen[str(txid).lower()] = float(first_seen)
            except (TypeError, ValueError):
                # The txid still counts as attempted; only its timestamp is lost
                logger.warning(f"Unreadable first-seen time for {txid} in {self.path}")
                self._seen[str(txid).lower()] = 0.0
        if self._seen:
            logger.info(f"Loaded {len(self._seen)} previously attempted txids from {self.path}")

    def mark_seen(self, txid: str) -> bool:
        first = super().mark_seen(txid)
        if first:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(".tmp")
            tmp.write_text(json.dumps(self._seen, indent=2))
            tmp.replace(self.path)
        return first
