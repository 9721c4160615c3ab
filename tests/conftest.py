"""
Pytest configuration and shared fixtures.
"""

import pytest
from unittest.mock import AsyncMock

from alumni.database import MongoDBManager
from alumni.models import AlumniRecord, Subscriber


def make_alumnus(**overrides) -> AlumniRecord:
    """Build an alumni record with sensible defaults."""
    data = {
        "url": "john-doe",
        "name": "John Doe",
        "location": "San Francisco, CA",
        "job": "Software Engineer",
        "company": "Google",
        "graduation_year": 2020,
        "major": "Computer Science",
        "error_parsing": False,
    }
    data.update(overrides)
    return AlumniRecord(**data)


@pytest.fixture
def sample_alumnus():
    """Create sample alumni record for testing."""
    return make_alumnus()


@pytest.fixture
def sample_alumni_document():
    """Alumni document as stored in MongoDB."""
    return {
        "url": "john-doe",
        "name": "John Doe",
        "location": "San Francisco, CA",
        "job": "Software Engineer",
        "company": "Google",
        "graduationYear": 2020,
        "major": "Computer Science",
        "otherEducation": "MSc in Artificial Intelligence",
        "otherJobs": ["Intern at Facebook", "TA at Stanford University"],
        "html": "<p>Profile description from LinkedIn</p>",
        "errorParsing": False,
    }


@pytest.fixture
def sample_company_document():
    """EquityZen company document for testing."""
    return {
        "name": "Test Company",
        "foundingDate": "2022",
        "notableInvestors": "XYZ Ventures",
        "hq": "San Francisco, CA, US",
        "totalFunding": "1.1M",
        "founders": [
            {"position": "CEO", "name": "Ricky Bobby"},
            {"position": "CFO", "name": "Tingus Pingus"},
        ],
        "alumnis": [
            {"name": "Mike Ross", "position": "Associate - Specter Litt", "url": "www.com.com"}
        ],
        "bio": "Test Company is a test company for testing purposes.",
        "ezenLink": "http://www.equityzen.com/testcompany",
        "industries": ["Test1", "Test2"],
        "favorite": True,
    }


@pytest.fixture
def sample_subscribers():
    return [
        Subscriber(email="ada@ucdavis.edu", name="Ada", subscribed=True),
        Subscriber(email="grace@ucdavis.edu", name="Grace", subscribed=True),
    ]


@pytest.fixture
def mock_db_manager():
    """Create a mock MongoDB manager for testing."""
    manager = AsyncMock(spec=MongoDBManager)
    manager.get_current_alumni.return_value = []
    manager.get_previous_alumni.return_value = []
    manager.get_subscribed.return_value = []
    manager.rotate_snapshot.return_value = 0
    manager.count_subscribed.return_value = 0
    manager.acquire_cycle_lease.return_value = True
    manager.release_cycle_lease.return_value = True
    return manager


@pytest.fixture
def scheduler_config():
    """Create scheduler configuration for testing."""
    from scheduler.models import SchedulerConfig
    return SchedulerConfig(
        schedule_day=1,
        schedule_hour=0,
        schedule_minute=0,
        timezone="UTC",
        mail_rate_limit_per_second=10
    )
