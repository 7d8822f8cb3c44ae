"""
Cleanup Job Handler

Housekeeping for the ``cleanup`` queue. Database work goes through the
store protocols; temp files are swept from the local filesystem.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from bookhive.core.config.settings import Settings, get_settings
from bookhive.core.exceptions import JobHandlerError
from bookhive.core.interfaces import BorrowRequestStore, NotificationStore, UserStore
from bookhive.core.logging.logger import get_logger

logger = get_logger(__name__)

CLOSED_BORROW_STATUSES = ("completed", "rejected", "cancelled")


def _cutoff(days: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


def sweep_directory(temp_dir: str, older_than_hours: float) -> tuple[int, int, float]:
    """
    Delete regular files in ``temp_dir`` last modified before the cutoff.

    Returns:
        (files_deleted, bytes_freed, cutoff_epoch_seconds). A missing
        directory deletes nothing.
    """
    cutoff = time.time() - older_than_hours * 3600
    deleted, freed = 0, 0
    directory = Path(temp_dir)
    if not directory.is_dir():
        return deleted, freed, cutoff

    for entry in directory.iterdir():
        if not entry.is_file():
            continue
        stat = entry.stat()
        if stat.st_mtime < cutoff:
            entry.unlink(missing_ok=True)
            deleted += 1
            freed += stat.st_size
    return deleted, freed, cutoff


class CleanupJobHandler:
    """
    Handlers for the ``cleanup`` queue.

    Stores may be omitted when only the filesystem sweep is needed; the
    registry then wires cleanup-temp-files alone.
    """

    def __init__(
        self,
        users: UserStore | None = None,
        notifications: NotificationStore | None = None,
        borrow_requests: BorrowRequestStore | None = None,
        settings: Settings | None = None,
    ):
        self._users = users
        self._notifications = notifications
        self._borrow_requests = borrow_requests
        self._settings = settings or get_settings()

    async def cleanup_expired_tokens(self, data: dict[str, Any]) -> dict[str, Any]:
        cutoff = _cutoff(data.get("older_than_days", 7))
        try:
            cleared = await self._users.clear_expired_password_resets(cutoff)
        except Exception as e:
            raise JobHandlerError(f"Failed to cleanup expired tokens: {e}") from e
        return {"success": True, "password_reset_tokens_cleared": cleared, "cutoff_date": cutoff.isoformat()}

    async def cleanup_old_notifications(self, data: dict[str, Any]) -> dict[str, Any]:
        """Delete read notifications only; unread ones are kept regardless of age."""
        cutoff = _cutoff(data.get("older_than_days", 30))
        try:
            deleted = await self._notifications.delete_read_before(cutoff)
        except Exception as e:
            raise JobHandlerError(f"Failed to cleanup old notifications: {e}") from e
        return {"success": True, "notifications_deleted": deleted, "cutoff_date": cutoff.isoformat()}

    async def cleanup_temp_files(self, data: dict[str, Any]) -> dict[str, Any]:
        temp_dir = data.get("temp_dir") or self._settings.media.TEMP_UPLOAD_DIR
        try:
            deleted, freed, cutoff = await asyncio.to_thread(
                sweep_directory, temp_dir, data.get("older_than_hours", 24)
            )
        except OSError as e:
            raise JobHandlerError(f"Failed to cleanup temp files: {e}", details={"temp_dir": temp_dir}) from e
        return {
            "success": True,
            "files_deleted": deleted,
            "total_size_freed": freed,
            "cutoff_time": datetime.fromtimestamp(cutoff, tz=timezone.utc).isoformat(),
        }

    async def cleanup_inactive_sessions(self, data: dict[str, Any]) -> dict[str, Any]:
        days = data.get("inactive_days", data.get("older_than_days", 30))
        cutoff = _cutoff(days)
        try:
            marked = await self._users.deactivate_inactive_users(cutoff)
        except Exception as e:
            raise JobHandlerError(f"Failed to cleanup inactive sessions: {e}") from e
        return {"success": True, "users_marked_inactive": marked, "cutoff_date": cutoff.isoformat()}

    async def cleanup_old_borrow_requests(self, data: dict[str, Any]) -> dict[str, Any]:
        cutoff = _cutoff(data.get("older_than_days", 90))
        try:
            deleted = await self._borrow_requests.delete_closed_before(cutoff, CLOSED_BORROW_STATUSES)
        except Exception as e:
            raise JobHandlerError(f"Failed to cleanup old borrow requests: {e}") from e
        return {"success": True, "requests_deleted": deleted, "cutoff_date": cutoff.isoformat()}

    async def comprehensive_cleanup(self, data: dict[str, Any]) -> dict[str, Any]:
        """Run every cleanup task with the same payload, in order."""
        results = {
            "tokens": await self.cleanup_expired_tokens(data),
            "notifications": await self.cleanup_old_notifications(data),
            "temp_files": await self.cleanup_temp_files(data),
            "sessions": await self.cleanup_inactive_sessions(data),
            "borrow_requests": await self.cleanup_old_borrow_requests(data),
        }
        logger.info(
            "Comprehensive cleanup finished",
            tokens=results["tokens"]["password_reset_tokens_cleared"],
            notifications=results["notifications"]["notifications_deleted"],
            temp_files=results["temp_files"]["files_deleted"],
            sessions=results["sessions"]["users_marked_inactive"],
            borrow_requests=results["borrow_requests"]["requests_deleted"],
        )
        return {"success": True, "timestamp": datetime.now(timezone.utc).isoformat(), "results": results}
