import os

import pytest

# In-memory registry for anything that imports the app
os.environ.setdefault("TESTING", "1")

from service_checker.config import CheckerConfig  # noqa: E402
from service_checker.metrics import get_metrics  # noqa: E402
from service_checker.models import ServiceRecord  # noqa: E402


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics().reset_metrics()
    yield
    get_metrics().reset_metrics()


@pytest.fixture
def fast_config():
    """Three attempts, no backoff, one second per attempt."""
    return CheckerConfig(retry_count=3, retry_backoff_ms=0, timeout_ms=1000)


@pytest.fixture
def make_service():
    def _make(**overrides) -> ServiceRecord:
        fields = {
            "id": "svc-1",
            "name": "Service One",
            "endpoint": "http://svc.local",
            "port": 8080,
            "action": "GET",
            "enabled": True,
            "triggered": False,
            "alert_count": 0,
            "last_alert_date": None,
            "last_success_date": None,
        }
        fields.update(overrides)
        return ServiceRecord(**fields)

    return _make
