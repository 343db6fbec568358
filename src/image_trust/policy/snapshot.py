"""
Snapshot Cache Module

Base class for read-mostly caches of cluster state. Readers use the current
snapshot without locking; a refresh builds a complete new snapshot and swaps
the reference in a single assignment, so no reader ever sees a partial one.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from ..cluster.accessor import ClusterAccessor

logger = logging.getLogger(__name__)


class SnapshotCache(ABC):
    """Immutable snapshot behind an atomically swapped reference."""

    def __init__(self, accessor: ClusterAccessor):
        self.accessor = accessor
        self._snapshot: Any = None
        self._refresh_lock = threading.Lock()
        self.last_refreshed: Optional[str] = None
        self.refresh()

    @abstractmethod
    def _build_snapshot(self) -> Any:
        """Read cluster state and build a new immutable snapshot."""
        pass

    @property
    def snapshot(self) -> Any:
        return self._snapshot

    def refresh(self):
        """
        Rebuild the snapshot from cluster state.

        Errors propagate and leave the previous snapshot in place.
        """
        with self._refresh_lock:
            snapshot = self._build_snapshot()
            self._snapshot = snapshot
            self.last_refreshed = datetime.now(timezone.utc).isoformat()
        logger.info("%s refreshed", type(self).__name__)
