"""
Unit Tests for CleanupJobHandler
"""

import os
import time
from datetime import datetime, timedelta, timezone

import pytest

from bookhive.core.exceptions import JobHandlerError
from bookhive.workers.handlers import CleanupJobHandler
from bookhive.workers.handlers.cleanup import CLOSED_BORROW_STATUSES, sweep_directory


def make_temp_files(directory, stale: int, fresh: int) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    two_days_ago = time.time() - 48 * 3600
    for n in range(stale):
        path = directory / f"stale-{n}.tmp"
        path.write_bytes(b"x" * 10)
        os.utime(path, (two_days_ago, two_days_ago))
    for n in range(fresh):
        (directory / f"fresh-{n}.tmp").write_bytes(b"y")


@pytest.mark.unit
class TestSweepDirectory:
    def test_deletes_only_stale_files(self, tmp_path):
        make_temp_files(tmp_path, stale=2, fresh=1)
        (tmp_path / "nested").mkdir()

        deleted, freed, _ = sweep_directory(str(tmp_path), older_than_hours=24)

        assert deleted == 2
        assert freed == 20
        assert sorted(p.name for p in tmp_path.iterdir()) == ["fresh-0.tmp", "nested"]

    def test_missing_directory_deletes_nothing(self, tmp_path):
        deleted, freed, _ = sweep_directory(str(tmp_path / "absent"), older_than_hours=24)
        assert (deleted, freed) == (0, 0)


@pytest.mark.unit
class TestCleanupTasks:
    @pytest.mark.asyncio
    async def test_expired_tokens_default_cutoff(self, user_store, test_settings):
        handler = CleanupJobHandler(users=user_store, settings=test_settings)

        result = await handler.cleanup_expired_tokens({})

        assert result["password_reset_tokens_cleared"] == 4
        age = datetime.now(timezone.utc) - user_store.cutoffs[0]
        assert timedelta(days=7) <= age < timedelta(days=7, minutes=1)

    @pytest.mark.asyncio
    async def test_old_notifications_uses_payload_age(self, notification_store, test_settings):
        handler = CleanupJobHandler(notifications=notification_store, settings=test_settings)

        result = await handler.cleanup_old_notifications({"older_than_days": 10})

        assert result["notifications_deleted"] == 2
        age = datetime.now(timezone.utc) - notification_store.cutoffs[0]
        assert timedelta(days=10) <= age < timedelta(days=10, minutes=1)

    @pytest.mark.asyncio
    async def test_old_borrow_requests_only_closed_statuses(self, borrow_request_store, test_settings):
        handler = CleanupJobHandler(borrow_requests=borrow_request_store, settings=test_settings)

        result = await handler.cleanup_old_borrow_requests({})

        assert result["requests_deleted"] == 5
        assert borrow_request_store.calls[0][1] == CLOSED_BORROW_STATUSES

    @pytest.mark.asyncio
    async def test_temp_files_default_directory(self, test_settings):
        from pathlib import Path

        make_temp_files(Path(test_settings.media.TEMP_UPLOAD_DIR), stale=1, fresh=2)
        handler = CleanupJobHandler(settings=test_settings)

        result = await handler.cleanup_temp_files({})

        assert result["files_deleted"] == 1
        assert result["total_size_freed"] == 10

    @pytest.mark.asyncio
    async def test_store_failure_is_a_handler_error(self, user_store, test_settings):
        async def broken(cutoff):
            raise ConnectionError("db down")

        user_store.deactivate_inactive_users = broken
        handler = CleanupJobHandler(users=user_store, settings=test_settings)

        with pytest.raises(JobHandlerError, match="inactive sessions"):
            await handler.cleanup_inactive_sessions({})


@pytest.mark.unit
class TestComprehensiveCleanup:
    @pytest.mark.asyncio
    async def test_runs_every_task_with_same_payload(
        self, user_store, notification_store, borrow_request_store, test_settings, tmp_path
    ):
        temp_dir = tmp_path / "sweep"
        make_temp_files(temp_dir, stale=1, fresh=1)
        handler = CleanupJobHandler(user_store, notification_store, borrow_request_store, test_settings)

        result = await handler.comprehensive_cleanup({"older_than_days": 30, "temp_dir": str(temp_dir)})

        results = result["results"]
        assert result["success"] is True
        assert results["tokens"]["password_reset_tokens_cleared"] == 4
        assert results["notifications"]["notifications_deleted"] == 2
        assert results["temp_files"]["files_deleted"] == 1
        assert results["sessions"]["users_marked_inactive"] == 3
        assert results["borrow_requests"]["requests_deleted"] == 5
        assert len(user_store.cutoffs) == 2
