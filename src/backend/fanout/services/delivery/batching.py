"""Token sanitizing and batch planning."""

from typing import Iterable, Iterator, Sequence

import structlog

logger = structlog.get_logger()


def unique_tokens(tokens: Iterable[str]) -> list[str]:
    """Remove duplicate and empty tokens while preserving first-occurrence order."""
    seen: set[str] = set()
    unique: list[str] = []
    original_count = 0

    for token in tokens:
        original_count += 1
        if not token or token in seen:
            continue
        seen.add(token)
        unique.append(token)

    if len(unique) < original_count:
        logger.info(
            "Deduplicated tokens",
            original_count=original_count,
            unique_count=len(unique),
            removed=original_count - len(unique),
        )

    return unique


def plan_batches(tokens: Sequence[str], batch_size: int) -> Iterator[list[str]]:
    """Yield contiguous, ordered slices of at most ``batch_size`` tokens.

    Every token is covered exactly once.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    for start in range(0, len(tokens), batch_size):
        yield list(tokens[start:start + batch_size])


def token_prefix(token: str) -> str:
    """Truncate a token for logging."""
    if len(token) <= 10:
        return token
    return token[:10] + "..."
