"""
Tensor Memory Tracking

Keeps a process-wide count of the weight tensors owned by live compiled
models, so that disposal can be verified: after `dispose()` the counters drop
back to where they were before the model was compiled.

Functions:
    track_tensors: Register the arrays owned by an object
    release_tensors: Forget everything an object registered
    memory_info: Current number of tracked tensors and their size in bytes
    log_memory_usage: Log the counters at INFO level
"""

import logging
import weakref
from dataclasses import dataclass
from typing import Dict, Iterable, List

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemoryInfo:
    """Snapshot of tracked tensor usage."""

    num_tensors: int
    num_bytes: int

    @property
    def num_megabytes(self) -> float:
        return self.num_bytes / (1024 * 1024)


class MemoryTracker:
    """
    Registry of tensors owned by live objects.

    Owners are keyed by identity. Registering an owner twice replaces its
    previous entry instead of counting the arrays again. An owner that is
    garbage collected without being released is forgotten automatically.
    """

    def __init__(self):
        self._owned: Dict[int, List[np.ndarray]] = {}

    def track(self, owner: object, tensors: Iterable[np.ndarray]) -> None:
        key = id(owner)
        self._owned[key] = [t for t in tensors if t is not None]
        weakref.finalize(owner, self._owned.pop, key, None)

    def release(self, owner: object) -> int:
        """Forget an owner's tensors. Returns how many were released."""
        released = self._owned.pop(id(owner), [])
        return len(released)

    def is_tracked(self, owner: object) -> bool:
        return id(owner) in self._owned

    def info(self) -> MemoryInfo:
        tensors = [t for owned in self._owned.values() for t in owned]
        return MemoryInfo(
            num_tensors=len(tensors),
            num_bytes=int(sum(t.nbytes for t in tensors)),
        )


_tracker = MemoryTracker()


def track_tensors(owner: object, tensors: Iterable[np.ndarray]) -> None:
    _tracker.track(owner, tensors)


def release_tensors(owner: object) -> int:
    return _tracker.release(owner)


def is_tracked(owner: object) -> bool:
    return _tracker.is_tracked(owner)


def memory_info() -> MemoryInfo:
    """Return the number and total size of tensors held by live models."""
    return _tracker.info()


def log_memory_usage(label: str = "") -> MemoryInfo:
    info = memory_info()
    prefix = f"{label}: " if label else ""
    logger.info(
        "%sTensors: %d, Memory: %.2f MB", prefix, info.num_tensors, info.num_megabytes
    )
    return info
