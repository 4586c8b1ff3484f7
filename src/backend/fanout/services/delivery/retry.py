"""Multi-pass delivery with per-token retry and exponential backoff.

Each pass sends the current working set in batches, then shrinks it to the
tokens that failed with a retryable error. Tokens that fail terminally are
recorded once and never sent again within the same call.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

import backoff
import structlog

from fanout.services.delivery.batching import plan_batches, token_prefix, unique_tokens
from fanout.services.delivery.content import DeliveryHints, NotificationContent
from fanout.services.delivery.errors import (
    DeliveryCancelledError,
    is_retryable_batch_error,
    is_retryable_token_error,
)
from fanout.services.delivery.gateway import BatchResponse, GatewayClient

logger = structlog.get_logger()


class DeliveryPhase(str, Enum):
    """Phases of one delivery call."""

    PLANNING = "planning"
    SENDING = "sending"
    EVALUATING = "evaluating"
    RETRYING = "retrying"
    DONE = "done"


class DeliveryStatus(str, Enum):
    """Overall outcome recorded by callers for a delivery."""

    SENT = "sent"
    PARTIAL_FAILURE = "partial_failure"


@dataclass(frozen=True)
class DeliveryResult:
    """Aggregate counts for one delivery call."""

    success_count: int
    failure_count: int

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    @property
    def status(self) -> DeliveryStatus:
        if self.failure_count > 0:
            return DeliveryStatus.PARTIAL_FAILURE
        return DeliveryStatus.SENT


@dataclass
class BatchResult:
    """Outcome of sending a single batch."""

    success_count: int = 0
    retryable_tokens: list[str] = field(default_factory=list)


@dataclass
class AttemptResult:
    """Outcome of sending every batch in one pass."""

    success_count: int = 0
    retryable_tokens: list[str] = field(default_factory=list)

    def add(self, batch_result: BatchResult) -> None:
        self.success_count += batch_result.success_count
        self.retryable_tokens.extend(batch_result.retryable_tokens)


@dataclass
class RetryState:
    """Bookkeeping for one delivery call. Never shared between calls."""

    total_success: int = 0
    final_failed_tokens: set[str] = field(default_factory=set)
    phase: DeliveryPhase = DeliveryPhase.PLANNING

    @property
    def failed_count(self) -> int:
        return len(self.final_failed_tokens)

    def add_success(self, count: int) -> None:
        self.total_success += count

    def mark_failed(self, token: str) -> None:
        self.final_failed_tokens.add(token)

    def is_failed(self, token: str) -> bool:
        return token in self.final_failed_tokens

    def mark_remaining_failed(self, tokens: list[str]) -> None:
        if tokens:
            logger.warning("Max retries exceeded for tokens", count=len(tokens))
            for token in tokens:
                self.mark_failed(token)

    def transition(self, phase: DeliveryPhase, **context) -> None:
        logger.debug("Delivery phase change", previous=self.phase.value, phase=phase.value, **context)
        self.phase = phase


def backoff_delays(initial_delay: float, max_delay: float) -> Iterator[float]:
    """Yield the wait before each retry: ``initial_delay * 2**(k-1)`` capped at ``max_delay``."""
    delays = backoff.expo(base=2, factor=initial_delay, max_value=max_delay)
    # backoff wait generators expect an initial send(None), as backoff itself does
    delays.send(None)
    return delays


def backoff_delay(attempt: int, initial_delay: float, max_delay: float) -> float:
    """Delay applied after ``attempt`` (1-indexed) before the next one."""
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    return next(itertools.islice(backoff_delays(initial_delay, max_delay), attempt - 1, None))


class RetryCoordinator:
    """Drives delivery passes until every token succeeded or was given up on."""

    def __init__(
        self,
        client: GatewayClient,
        *,
        batch_size: int,
        max_retries: int,
        initial_retry_delay: float,
        max_retry_delay: float,
        hints: DeliveryHints | None = None,
    ):
        self.client = client
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self.hints = hints or DeliveryHints()

    async def run(
        self,
        tokens: list[str],
        content: NotificationContent,
        cancel_event: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> DeliveryResult:
        """Deliver ``content`` to already deduplicated ``tokens``.

        Args:
            tokens: Unique, non-empty device tokens
            content: Notification content, identical on every pass
            cancel_event: Set to abort while waiting between passes
            deadline: Event loop time after which waiting is abandoned

        Returns:
            DeliveryResult with total successes and permanently failed tokens

        Raises:
            DeliveryCancelledError: If cancelled while waiting to retry. The
                pending retry tokens are counted as failed.
        """
        state = RetryState()
        current = list(tokens)
        delays = backoff_delays(self.initial_retry_delay, self.max_retry_delay)

        for attempt in range(1, self.max_retries + 1):
            if not current:
                break

            state.transition(DeliveryPhase.SENDING, attempt=attempt)
            logger.info("Attempt sending notifications", attempt=attempt, tokens=len(current))

            attempt_result = await self._send_pass(current, content, state)
            state.add_success(attempt_result.success_count)

            state.transition(DeliveryPhase.EVALUATING, attempt=attempt)
            logger.info(
                "Attempt results",
                attempt=attempt,
                success=attempt_result.success_count,
                failed_retryable=len(attempt_result.retryable_tokens),
                failed_non_retryable=state.failed_count,
            )

            if not attempt_result.retryable_tokens:
                logger.info("No tokens to retry, delivery complete")
                current = []
                break

            current = unique_tokens(attempt_result.retryable_tokens)

            if attempt < self.max_retries:
                state.transition(DeliveryPhase.RETRYING, attempt=attempt)
                reason = await self._wait_for_retry(next(delays), attempt, cancel_event, deadline)
                if reason is not None:
                    state.transition(DeliveryPhase.DONE, cancelled=reason)
                    raise DeliveryCancelledError(
                        reason,
                        success_count=state.total_success,
                        failure_count=state.failed_count + len(current),
                    )

        # Only tokens still pending after the last pass are given up on
        state.mark_remaining_failed(current)
        state.transition(DeliveryPhase.DONE)

        logger.info(
            "Notification send complete",
            total_success=state.total_success,
            total_failure=state.failed_count,
            original_tokens=len(tokens),
        )
        return DeliveryResult(success_count=state.total_success, failure_count=state.failed_count)

    async def _send_pass(
        self,
        tokens: list[str],
        content: NotificationContent,
        state: RetryState,
    ) -> AttemptResult:
        """Send every batch of one pass sequentially."""
        attempt_result = AttemptResult()
        for index, batch in enumerate(plan_batches(tokens, self.batch_size)):
            batch_result = await self._send_batch(batch, index * self.batch_size, content, state)
            attempt_result.add(batch_result)
        return attempt_result

    async def _send_batch(
        self,
        batch: list[str],
        batch_start: int,
        content: NotificationContent,
        state: RetryState,
    ) -> BatchResult:
        try:
            response = await self.client.send_batch(batch, content, self.hints)
        except Exception as e:
            return self._handle_batch_error(e, batch, batch_start, state)

        if len(response.responses) != len(batch):
            # Results cannot be matched to tokens, so the batch is final
            logger.error(
                "Gateway response does not match batch",
                batch_start=batch_start,
                batch_size=len(batch),
                response_count=len(response.responses),
            )
            for token in batch:
                state.mark_failed(token)
            return BatchResult()

        retryable_tokens = self._process_token_responses(batch, response, state)

        logger.info(
            "Batch results",
            batch_start=batch_start,
            batch_end=batch_start + len(batch),
            batch_size=len(batch),
            success=response.success_count,
            failure=response.failure_count,
        )
        return BatchResult(success_count=response.success_count, retryable_tokens=retryable_tokens)

    def _handle_batch_error(
        self,
        error: Exception,
        batch: list[str],
        batch_start: int,
        state: RetryState,
    ) -> BatchResult:
        """Resolve a failure that affected the whole batch."""
        batch_end = batch_start + len(batch)

        if is_retryable_batch_error(error):
            logger.warning(
                "Batch failed with retryable error",
                batch_start=batch_start,
                batch_end=batch_end,
                error=str(error),
            )
            return BatchResult(
                retryable_tokens=[token for token in batch if not state.is_failed(token)],
            )

        logger.error(
            "Batch failed with non-retryable error",
            batch_start=batch_start,
            batch_end=batch_end,
            error=str(error),
        )
        for token in batch:
            state.mark_failed(token)
        return BatchResult()

    def _process_token_responses(
        self,
        batch: list[str],
        response: BatchResponse,
        state: RetryState,
    ) -> list[str]:
        """Collect retryable tokens and finalize terminal ones."""
        retryable_tokens = []

        for token, result in zip(batch, response.responses):
            if result.success:
                continue

            if not state.is_failed(token) and is_retryable_token_error(result.error):
                retryable_tokens.append(token)
                logger.warning(
                    "Token failed with retryable error",
                    error=str(result.error),
                    token_prefix=token_prefix(token),
                )
            else:
                state.mark_failed(token)
                logger.warning(
                    "Token failed with non-retryable error",
                    error=str(result.error),
                    token_prefix=token_prefix(token),
                )

        return retryable_tokens

    async def _wait_for_retry(
        self,
        delay: float,
        attempt: int,
        cancel_event: asyncio.Event | None,
        deadline: float | None,
    ) -> str | None:
        """Sleep before the next pass.

        Returns:
            None when the full delay elapsed, otherwise the cancellation reason
        """
        loop = asyncio.get_running_loop()
        wait = delay
        hits_deadline = False
        if deadline is not None:
            remaining = deadline - loop.time()
            if remaining <= delay:
                wait = max(remaining, 0.0)
                hits_deadline = True

        logger.info("Waiting before retry", delay_ms=int(delay * 1000), next_attempt=attempt + 1)

        if cancel_event is None:
            await asyncio.sleep(wait)
        else:
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=wait)
                logger.warning("Delivery cancelled during retry wait", attempt=attempt)
                return "cancelled"
            except asyncio.TimeoutError:
                pass

        if hits_deadline:
            logger.warning("Delivery deadline exceeded during retry wait", attempt=attempt)
            return "deadline exceeded"
        return None
