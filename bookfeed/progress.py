"""In-memory pagination progress for resumable fetches."""
import logging
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

TaskKey = Tuple[str, str]  # (provider, subject)


class ProgressTracker:
    """
    Next pagination offset per fetch task.

    Lives for the lifetime of the process only. After a restart every task
    starts again at offset 0, which is safe because the store deduplicates.
    """

    def __init__(self):
        self._offsets: Dict[TaskKey, int] = {}

    def get_offset(self, key: TaskKey) -> int:
        return self._offsets.get(key, 0)

    def set_offset(self, key: TaskKey, offset: int) -> None:
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        self._offsets[key] = offset
        logger.debug(f"Progress {key[0]}/{key[1]} -> {offset}")

    def reset(self, key: Optional[TaskKey] = None) -> None:
        """Forget one task, or all of them."""
        if key is None:
            self._offsets.clear()
        else:
            self._offsets.pop(key, None)

    def snapshot(self) -> Dict[TaskKey, int]:
        return dict(self._offsets)
