from __future__ import annotations

import threading
from collections import OrderedDict


class SubmissionCache:
    """
    Process-local set of recently accepted submission ids, bounded with LRU
    eviction.

    Fast path only: it is empty after a restart and not shared between
    workers. The unique constraint on applications.jotform_submission_id is
    what actually prevents double ingestion.
    """

    def __init__(self, max_size: int = 10000) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._ids: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def __contains__(self, submission_id: object) -> bool:
        with self._lock:
            if submission_id not in self._ids:
                return False
            self._ids.move_to_end(submission_id)  # type: ignore[arg-type]
            return True

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, submission_id: str) -> None:
        with self._lock:
            self._ids[submission_id] = None
            self._ids.move_to_end(submission_id)
            while len(self._ids) > self.max_size:
                self._ids.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._ids.clear()
