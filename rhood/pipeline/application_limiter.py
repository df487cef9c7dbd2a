"""Daily application gate.

Counts come straight from applications.created_at, so the limit resets when
the calendar date changes with no explicit reset.
"""

import logging
import sqlite3
from datetime import date

from rhood.core.config import ApplicationLimitConfig
from rhood.core.db import count_applications_on
from rhood.core.errors import DailyLimitExceeded

logger = logging.getLogger(__name__)


class ApplicationLimiter:
    """Enforces the per-user daily application limit.

    Usage::

        limiter = ApplicationLimiter(conn, ApplicationLimitConfig(daily_limit=5))
        limiter.check("user-1")  # raises DailyLimitExceeded at the limit
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: ApplicationLimitConfig | None = None,
    ) -> None:
        self._conn = conn
        self._config = config or ApplicationLimitConfig()

    @property
    def daily_limit(self) -> int:
        return self._config.daily_limit

    def used_today(self, user_id: str, today: date | None = None) -> int:
        return count_applications_on(self._conn, user_id, today)

    def remaining(self, user_id: str, today: date | None = None) -> int:
        """Return how many more applications the user may submit today."""
        return max(0, self._config.daily_limit - self.used_today(user_id, today))

    def can_apply(self, user_id: str, today: date | None = None) -> bool:
        return self.remaining(user_id, today) > 0

    def check(self, user_id: str, today: date | None = None) -> int:
        """Raise DailyLimitExceeded if the user is at the limit; else return remaining."""
        remaining = self.remaining(user_id, today)
        if remaining <= 0:
            logger.info(
                "Application limit reached for user=%s: %d/%d today",
                user_id, self.used_today(user_id, today), self._config.daily_limit,
            )
            raise DailyLimitExceeded(remaining, self._config.daily_limit)
        return remaining
