"""
Retry policy for provider calls.

The policy is a pure decision function: given how many attempts a job has
made and how the last one failed, it answers "retry after N seconds" or
"give up". Timing and re-queueing are the dispatcher's job, so the policy
can be tested without an event loop.
"""

from __future__ import annotations

import random

from pydantic import BaseModel

from .errors import ErrorKind


class RetryDecision(BaseModel):
    """Outcome of RetryPolicy.decide."""

    retry: bool
    delay: float = 0.0

    model_config = {"frozen": True}

    @classmethod
    def after(cls, delay: float) -> "RetryDecision":
        return cls(retry=True, delay=delay)

    @classmethod
    def give_up(cls) -> "RetryDecision":
        return cls(retry=False)


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    Implements exponential backoff with symmetric jitter. The delay after
    attempt N is: clamp(base_delay * (exponential_base ** N) +/- U(0, base_delay), 0, max_delay)

    Attributes:
        max_attempts: Maximum number of attempts (including the first).
        base_delay: Backoff unit in seconds.
        max_delay: Maximum delay in seconds (caps backoff).
        exponential_base: Base for exponential backoff calculation.
        jitter: Whether to add random jitter to delays.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True

    model_config = {"frozen": True}

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the backoff delay after a given attempt.

        Args:
            attempt: Number of attempts made so far.

        Returns:
            Delay in seconds, always within [0, max_delay].
        """
        delay = self.base_delay * (self.exponential_base**attempt)

        if self.jitter:
            delay += random.uniform(-self.base_delay, self.base_delay)

        return min(max(delay, 0.0), self.max_delay)

    def decide(
        self,
        attempt: int,
        kind: ErrorKind,
        retry_after: float | None = None,
    ) -> RetryDecision:
        """Decide whether a failed attempt should be retried.

        Args:
            attempt: Number of attempts made so far, including the failed one.
            kind: Classification of the failure.
            retry_after: Provider-suggested wait, honoured for rate limiting.

        Returns:
            RetryDecision with the backoff delay, or a give-up decision.
        """
        if not kind.is_transient:
            return RetryDecision.give_up()

        if attempt >= self.max_attempts:
            return RetryDecision.give_up()

        if retry_after is not None and retry_after >= 0:
            return RetryDecision.after(min(retry_after, self.max_delay))

        return RetryDecision.after(self.calculate_delay(attempt))


DEFAULT_RETRY_POLICY = RetryPolicy()
