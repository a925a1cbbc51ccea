from collections import defaultdict


class UnreadTracker:
    """Per-channel unread counters. The active channel always reads as zero."""

    def __init__(self):
        self._counts: defaultdict[str, int] = defaultdict(int)
        self.active_channel_id: str | None = None

    def increment(self, channel_id: str) -> int:
        if channel_id == self.active_channel_id:
            return 0
        self._counts[channel_id] += 1
        return self._counts[channel_id]

    def reset(self, channel_id: str) -> None:
        self._counts.pop(channel_id, None)

    def get(self, channel_id: str) -> int:
        if channel_id == self.active_channel_id:
            return 0
        return self._counts.get(channel_id, 0)

    def activate(self, channel_id: str | None) -> None:
        self.active_channel_id = channel_id
        if channel_id is not None:
            self.reset(channel_id)

    def counts(self) -> dict[str, int]:
        return {cid: self.get(cid) for cid in self._counts if self.get(cid)}

    def total(self) -> int:
        return sum(self.counts().values())
