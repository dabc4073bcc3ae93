"""Executor factory used by the httpx transport and pipeline completions."""

from __future__ import annotations

from concurrent import futures
from typing import Optional, Tuple

Executor = futures.Executor

_POLICIES = ("io", "inline")


def create_executor(
    policy: str,
    workers: int,
    *,
    thread_name_prefix: str = "stubnet-io",
) -> Tuple[Optional[Executor], bool]:
    """
    Return an executor configured for the given policy.

    Args:
        policy: ``"io"`` selects a thread pool for blocking network calls;
            ``"inline"`` returns no executor so work runs on the calling thread.
        workers: Desired concurrency level for the thread pool.
        thread_name_prefix: Prefix applied to pool thread names.

    Returns:
        Tuple of (executor, needs_shutdown). Caller is responsible for shutting
        down the returned executor when ``needs_shutdown`` is ``True``.

    Raises:
        ValueError: If ``policy`` is unknown.
    """
    normalized = (policy or "io").lower()
    if normalized not in _POLICIES:
        raise ValueError(f"Unknown executor policy {policy!r}; expected one of {_POLICIES}")
    if normalized == "inline" or workers < 1:
        return None, False
    return (
        futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix=thread_name_prefix),
        True,
    )
