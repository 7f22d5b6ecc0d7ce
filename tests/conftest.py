"""
Pytest configuration and shared fixtures for the admin analytics tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import pytest

from backend.admin_analytics.models import RawRecordSet
from backend.admin_analytics.normalizer import NormalizedDataset, normalize_records
from backend.admin_analytics.repository import InMemoryDataSource

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def days_ago(days: float) -> str:
    return (NOW - timedelta(days=days)).isoformat()


def platform_rows() -> Dict[str, List[Dict[str, Any]]]:
    """
    Four users with overlapping profiles:

    - u1: long-time power user, signed in yesterday, six applications
    - u2: joined ten days ago, one application five days ago
    - u3: old account, last seen 45 days ago, no applications (churned)
    - u4: joined two days ago and signed in that day, no applications
    """

    users = [
        {"id": "u1", "email": "one@example.com", "created_at": days_ago(60), "last_sign_in_at": days_ago(1)},
        {"id": "u2", "email": "two@example.com", "createdAt": days_ago(10)},
        {"id": "u3", "email": "three@example.com", "created_at": days_ago(90), "last_sign_in_at": days_ago(45)},
        {"id": "u4", "email": "four@example.com", "created_at": days_ago(2), "lastSignInAt": days_ago(2)},
    ]
    u1_statuses = ["Interview", "Offer", "Applied", "Interview", "Applied", "Applied"]
    u1_days = [40, 35, 20, 10, 3, 2]
    applications = [
        {
            "id": f"a{index}",
            "user_id": "u1",
            "company": f"Company {index}",
            "position": "Engineer",
            "status": status,
            "created_at": days_ago(day),
        }
        for index, (status, day) in enumerate(zip(u1_statuses, u1_days), start=1)
    ]
    applications.append(
        {"id": "a7", "userId": "u2", "company": "Acme", "position": "Analyst", "status": "Rejected", "createdAt": days_ago(5)}
    )
    goals = [
        {"id": "g1", "user_id": "u1", "total_goal": 100, "weekly_goal": 5, "monthly_goal": 20, "created_at": days_ago(50)},
        {"id": "g2", "user_id": "u2", "total_goal": 30, "weekly_goal": 3, "monthly_goal": 10, "created_at": days_ago(9)},
    ]
    events = [
        {"user_id": "u1", "type": "session_start", "timestamp": days_ago(1), "session_duration_ms": 600000},
        {"user_id": "u1", "event_name": "page_view", "timestamp": days_ago(1)},
        {"user_id": "u2", "type": "session", "timestamp": days_ago(5), "session_duration_ms": 300000},
    ]
    return {"users": users, "applications": applications, "goals": goals, "events": events}


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def raw_records() -> RawRecordSet:
    rows = platform_rows()
    return RawRecordSet(
        users=rows["users"],
        applications=rows["applications"],
        goals=rows["goals"],
        events=rows["events"],
    )


@pytest.fixture
def dataset(raw_records: RawRecordSet) -> NormalizedDataset:
    return normalize_records(raw_records)


@pytest.fixture
def empty_dataset() -> NormalizedDataset:
    return normalize_records(RawRecordSet())


@pytest.fixture
def platform_source() -> InMemoryDataSource:
    return InMemoryDataSource(**platform_rows())


@pytest.fixture
def local_source() -> InMemoryDataSource:
    return InMemoryDataSource(
        applications=[
            {"id": "l1", "status": "Applied", "created_at": days_ago(12)},
            {"id": "l2", "status": "Interview", "created_at": days_ago(3)},
        ],
        goals=[{"id": "lg1", "total_goal": 50, "weekly_goal": 5, "monthly_goal": 20, "created_at": days_ago(20)}],
    )
