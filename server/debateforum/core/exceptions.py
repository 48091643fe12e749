class DebateError(Exception):
    """Base error for the debate core; carries the HTTP status it maps to."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DebateError):
    status_code = 400


class NotFoundError(DebateError):
    status_code = 404


class UnauthorizedError(DebateError):
    status_code = 401


class RateLimitExceeded(DebateError):
    status_code = 429

    def __init__(self, limiter_class: str, ms_before_next: int, limit: int):
        self.limiter_class = limiter_class
        self.ms_before_next = ms_before_next
        self.limit = limit
        super().__init__(
            f"You have exceeded the rate limit. Please try again in {self.retry_after} seconds."
        )

    @property
    def retry_after(self) -> int:
        # Seconds, rounded up, for the Retry-After header.
        return -(-self.ms_before_next // 1000)
