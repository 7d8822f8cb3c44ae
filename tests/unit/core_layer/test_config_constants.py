"""
Unit Tests for Configuration Constants

Tests the fixed policy values: TTL classes, limit classes, queues and job types.
"""

import pytest

from bookhive.core.config.constants import (
    BOOK_CACHE_PATTERNS,
    POPULAR_CATEGORIES,
    QUEUE_JOB_TYPES,
    RATE_LIMITS,
    CacheTTL,
    JobType,
    LimitClass,
    QueueName,
)


@pytest.mark.unit
class TestCacheTTL:
    def test_ttl_classes(self):
        assert CacheTTL.SESSION == 7 * 24 * 3600
        assert CacheTTL.POPULAR == 24 * 3600
        assert CacheTTL.GEO == 30 * 60
        assert CacheTTL.ONLINE_USERS == 5 * 60
        assert CacheTTL.SEARCH == 3600

    def test_book_patterns_cover_every_listing(self):
        assert set(BOOK_CACHE_PATTERNS) == {"books:popular:*", "books:search:*", "books:nearby:*"}


@pytest.mark.unit
class TestRateLimitClasses:
    def test_every_limit_class_has_a_rule(self):
        assert set(RATE_LIMITS) == {c.value for c in LimitClass}

    def test_auth_is_strictest(self):
        assert RATE_LIMITS["auth"] == (5, 900)
        assert RATE_LIMITS["search"] == (100, 3600)


@pytest.mark.unit
class TestQueues:
    def test_four_queues(self):
        assert set(QUEUE_JOB_TYPES) == {"email", "notification", "image-processing", "cleanup"}
        assert {q.value for q in QueueName} == set(QUEUE_JOB_TYPES)

    def test_every_job_type_belongs_to_exactly_one_queue(self):
        owners = [queue for queue, types in QUEUE_JOB_TYPES.items() for _ in types]
        assert len(owners) == len(JobType)

        all_types = set().union(*QUEUE_JOB_TYPES.values())
        assert all_types == {t.value for t in JobType}

    def test_popular_categories(self):
        assert POPULAR_CATEGORIES == ("fiction", "non-fiction", "science", "technology", "history")
