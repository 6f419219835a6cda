"""Retry budget and exponential backoff schedule for RPC attempts."""


class RetryConfig:
    """
    Configuration for per-provider retry behavior.

    Parameters
    ----------
    max_attempts : int
        Attempts against one provider before failing over
    initial_backoff : float
        Delay in seconds before the second attempt
    multiplier : float
        Growth factor applied for each further attempt
    max_backoff : float
        Upper bound on any single delay

    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_backoff: float = 0.1,
        multiplier: float = 3.0,
        max_backoff: float = 30.0,
    ) -> None:
        if max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self.multiplier = multiplier
        self.max_backoff = max_backoff

    def get_delay(self, attempt: int) -> float:
        """
        Calculate the sleep before a given attempt.

        Parameters
        ----------
        attempt : int
            Attempt number (1-indexed). The first attempt fires immediately.

        Returns
        -------
        float
            Delay in seconds: 0 for attempt 1, then
            ``initial_backoff * multiplier ** (attempt - 2)``

        """
        if attempt <= 1:
            return 0.0
        delay = self.initial_backoff * (self.multiplier ** (attempt - 2))
        return min(delay, self.max_backoff)

    def schedule(self) -> list[float]:
        """Delays for every attempt of one provider, in order."""
        return [self.get_delay(attempt) for attempt in range(1, self.max_attempts + 1)]
