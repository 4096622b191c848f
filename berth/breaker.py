DEFAULT_THRESHOLD = 3


class CircuitBreaker:
    """Trips after `threshold` bead failures in a row; a success resets it."""

    def __init__(self, threshold: int = DEFAULT_THRESHOLD):
        self.threshold = threshold if threshold > 0 else DEFAULT_THRESHOLD
        self.consecutive_failures = 0

    @property
    def tripped(self) -> bool:
        return self.consecutive_failures >= self.threshold

    def record_failure(self) -> bool:
        """Count one failure. Returns True if the breaker is now tripped."""
        self.consecutive_failures += 1
        return self.tripped

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def reset(self) -> None:
        self.consecutive_failures = 0
