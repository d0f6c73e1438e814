import time
from dataclasses import dataclass
from typing import Mapping


@dataclass(frozen=True)
class RateLimitInfo:
    limit: int
    remaining: int
    reset_at: int
    policy: str | None = None

    @property
    def usage_percentage(self) -> float:
        if self.limit <= 0:
            return 100.0
        return (self.limit - self.remaining) / self.limit * 100


@dataclass(frozen=True)
class ThrottleRecommendation:
    """Pacing suggested for the rest of a run.

    Attributes:
        should_throttle: Whether the run should slow down
        concurrency: Suggested number of simultaneous requests
        delay: Pause after each successful request, in seconds
        reason: Human-readable explanation, logged when throttling changes
    """
    should_throttle: bool
    concurrency: int
    delay: float
    reason: str


LARGE_DOWNLOAD = 1000


def _header(headers: Mapping[str, str], name: str) -> str | None:
    return headers.get(f'ratelimit-{name}') or headers.get(f'x-ratelimit-{name}')


class RateLimitTracker:
    """Remembers the most recent rate limit advertised by the server.

    Servers announce their budget through ``ratelimit-*`` (or ``x-ratelimit-*``)
    headers; the tracker keeps the last complete set for status reporting.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._last: RateLimitInfo | None = None

    @property
    def last(self) -> RateLimitInfo | None:
        return self._last

    def observe(self, headers: Mapping[str, str]) -> RateLimitInfo | None:
        """Parse rate limit headers; returns None (and keeps the previous state) if incomplete."""
        limit = _header(headers, 'limit')
        remaining = _header(headers, 'remaining')
        reset = _header(headers, 'reset')
        if not limit or not remaining or not reset:
            return None

        try:
            info = RateLimitInfo(int(limit), int(remaining), int(reset), _header(headers, 'policy'))
        except ValueError:
            return None

        self._last = info
        return info

    def recommend(self, total: int, progress: int) -> ThrottleRecommendation:
        """Suggest concurrency and pacing for a run of total items, progress of which are done.

        Without server information only large runs are slowed down. Otherwise the
        closer the budget is to exhaustion, the fewer and slower the requests.
        """
        info = self._last
        if info is None:
            if total > LARGE_DOWNLOAD:
                return ThrottleRecommendation(True, 2, 0.5,
                                              f"Large download (>{LARGE_DOWNLOAD} items) - using conservative defaults")
            return ThrottleRecommendation(False, 3, 0.0, "No rate limit information")

        remaining_items = total - progress
        usage = info.usage_percentage
        if info.remaining < 100 or usage > 90:
            return ThrottleRecommendation(True, 1, 2.0, f"Critical: only {info.remaining} requests remaining "
                                                        f"({usage:.1f}% used)")
        if info.remaining < 500 or usage > 70:
            return ThrottleRecommendation(True, 1, 1.0, f"Caution: {info.remaining} requests remaining "
                                                        f"({usage:.1f}% used)")
        if remaining_items > info.remaining * 0.8:
            return ThrottleRecommendation(True, 2, 0.5, f"Pacing: {remaining_items} items left, "
                                                        f"{info.remaining} requests available")
        if total > LARGE_DOWNLOAD and progress > 500:
            return ThrottleRecommendation(True, 2, 0.2, "Large download - proactive throttling after 500 items")
        return ThrottleRecommendation(False, 3, 0.0, f"Normal pace: {info.remaining} requests remaining")

    def status_message(self) -> str:
        if self._last is None:
            return "No rate limit information available"

        info = self._last
        seconds_until_reset = max(0, info.reset_at - int(self._clock()))
        minutes = -(-seconds_until_reset // 60)
        return (f"Rate limit: {info.remaining}/{info.limit} remaining "
                f"({info.usage_percentage:.1f}% used), resets in {minutes}min")
