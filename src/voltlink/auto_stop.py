"""Automatic stop of sessions whose vehicle stopped drawing power."""

from dataclasses import dataclass, field


@dataclass
class AutoStopPolicy:
    """Stop after ``zero_samples`` consecutive zero-power samples once ``min_elapsed`` seconds passed."""

    min_elapsed: float = 60.0
    zero_samples: int = 4


@dataclass
class _Tracker:
    zero_count: int = 0
    fired: bool = False


@dataclass
class AutoStopMonitor:
    """
    Counts consecutive zero-power samples per session.

    ``observe`` returns True exactly once per session: on the sample that
    reaches the threshold. Any non-zero sample, or a zero sample before the
    minimum elapsed time, resets the count.
    """

    policy: AutoStopPolicy = field(default_factory=AutoStopPolicy)
    _sessions: dict[int, _Tracker] = field(default_factory=dict)

    def observe(self, session_id: int, power_w: float, elapsed_seconds: float) -> bool:
        tracker = self._sessions.setdefault(session_id, _Tracker())
        if tracker.fired:
            return False

        if power_w == 0 and elapsed_seconds > self.policy.min_elapsed:
            tracker.zero_count += 1
        else:
            tracker.zero_count = 0

        if tracker.zero_count >= self.policy.zero_samples:
            tracker.fired = True
            return True
        return False

    def zero_count(self, session_id: int) -> int:
        tracker = self._sessions.get(session_id)
        return tracker.zero_count if tracker else 0

    def has_fired(self, session_id: int) -> bool:
        tracker = self._sessions.get(session_id)
        return bool(tracker and tracker.fired)

    def forget(self, session_id: int):
        self._sessions.pop(session_id, None)
