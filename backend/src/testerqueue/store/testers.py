"""Round-robin reviewer selection over each region's active reviewers."""

from __future__ import annotations

from testerqueue.store.queues import QueueStore


class TesterPool:
    """Rotates through the live reviewer list of each region.

    The cursor is only an index; the reviewer list is read fresh from the
    queue store on every call, so reviewers joining or leaving just shift
    who sits at each index.
    """

    def __init__(self, queues: QueueStore):
        self._queues = queues
        self._cursors: dict[str, int] = {}

    def next_reviewer(self, region: str) -> str | None:
        reviewers = self._queues.get_queue(region).active_reviewers
        if not reviewers:
            return None
        cursor = self._cursors.get(region, 0) % len(reviewers)
        self._cursors[region] = (cursor + 1) % len(reviewers)
        return reviewers[cursor]

    def reset(self, region: str | None = None) -> None:
        if region is None:
            self._cursors.clear()
        else:
            self._cursors.pop(region, None)
