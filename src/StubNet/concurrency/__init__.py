"""
Concurrency helpers shared across StubNet components.

Exposes :func:`create_executor`, which builds the thread pool the default
transport performs blocking ``httpx`` sends on.
"""

from .executors import create_executor

__all__ = ["create_executor"]
