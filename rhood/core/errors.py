"""Exception hierarchy for the matchmaking core.

Validation and data-store errors propagate to the caller. AI errors are
caught inside the AI pipeline and turned into a deterministic fallback.
"""


class RhoodError(Exception):
    """Base class for all core errors."""


class MissingIdentifierError(RhoodError, ValueError):
    """A required user, mix or opportunity id was not supplied."""

    def __init__(self, *names: str) -> None:
        self.names = names
        super().__init__(f"Missing required identifier(s): {', '.join(names)}")


class NotFoundError(RhoodError, LookupError):
    """A record required by the operation does not exist."""


class DailyLimitExceeded(RhoodError):
    """The user has used up today's applications."""

    def __init__(self, remaining: int, limit: int) -> None:
        self.remaining = remaining
        self.limit = limit
        super().__init__(
            f"Daily application limit reached. You have {remaining} "
            "applications remaining today."
        )


class AlreadyApplied(RhoodError):
    """An application for this (user, opportunity) pair already exists."""

    def __init__(self, user_id: str, opportunity_id: str) -> None:
        self.user_id = user_id
        self.opportunity_id = opportunity_id
        super().__init__("You have already applied to this opportunity")


class MixRequired(RhoodError):
    """The user must upload at least one mix before applying."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__("Upload at least one mix before applying to opportunities")


class AIServiceUnavailable(RhoodError):
    """The completion endpoint failed, timed out or is not configured."""


class MalformedAIResponse(RhoodError, ValueError):
    """A completion was received but does not satisfy the match contract."""


class DataStoreError(RhoodError):
    """The underlying store failed a read or write."""
