"""
Source-of-Truth Store Protocols

The CRUD layer owns the database. The cleanup jobs and the cache warmer
only need the narrow operations below, so they depend on these protocols
rather than on any ORM or driver.

Architectural Decision: Protocol-based abstraction
- Cleanup handlers are testable with in-memory stores
- The database driver stays out of the job core
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class UserStore(Protocol):
    """User records touched by token and session cleanup."""

    async def clear_expired_password_resets(self, cutoff: datetime) -> int:
        """
        Unset password reset tokens that expired before ``cutoff``.

        Returns:
            Number of users modified
        """
        ...

    async def deactivate_inactive_users(self, cutoff: datetime) -> int:
        """
        Mark active users whose last activity is before ``cutoff`` as inactive.

        Returns:
            Number of users modified
        """
        ...


@runtime_checkable
class NotificationStore(Protocol):
    """Stored in-app notifications."""

    async def delete_read_before(self, cutoff: datetime) -> int:
        """
        Delete notifications created before ``cutoff`` that have been read.

        Returns:
            Number of notifications deleted
        """
        ...


@runtime_checkable
class BorrowRequestStore(Protocol):
    """Borrow request history."""

    async def delete_closed_before(self, cutoff: datetime, statuses: Iterable[str]) -> int:
        """
        Delete requests created before ``cutoff`` whose status is in ``statuses``.

        Returns:
            Number of requests deleted
        """
        ...


@runtime_checkable
class WarmupSource(Protocol):
    """Read-only queries the cache warmer runs against the source of truth."""

    async def popular_books(self, category: str) -> list[dict[str, Any]]:
        ...

    async def community_stats(self) -> dict[str, Any]:
        ...

    async def book_locations(self) -> list[tuple[str, float, float]]:
        """Return ``(book_id, longitude, latitude)`` for every located book."""
        ...

    async def common_searches(self) -> list[tuple[str, dict[str, Any], list[dict[str, Any]]]]:
        """Return ``(query, filters, results)`` triples worth pre-caching."""
        ...
