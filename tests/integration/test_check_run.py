"""
End-to-end check runs against a real in-memory registry.

Probes hit respx-mocked HTTP, a faked ping subprocess and a local TCP server;
the notifier is replaced with a recorder so deliveries can be asserted.
"""

import asyncio
from typing import List

import aiosmtplib
import pytest
import respx

from service_checker.config import CheckerConfig, SmtpConfig
from service_checker.logging import CheckerLogger
from service_checker.metrics import MetricNames, get_metrics
from service_checker.models import CheckAction, Result, ServiceRecord
from service_checker.notifier import EmailNotifier
from service_checker.orchestrator import CheckOrchestrator
from service_checker.persistence import DatabaseManager, ServiceRegistry
from service_checker.probes import PROBES


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.alerts: List[List[str]] = []
        self.recoveries: List[List[str]] = []

    async def send_alert(self, names: List[str]) -> Result:
        return self._record(self.alerts, names)

    async def send_recover(self, names: List[str]) -> Result:
        return self._record(self.recoveries, names)

    def _record(self, sink: List[List[str]], names: List[str]) -> Result:
        if not names:
            return Result.success()
        sink.append(list(names))
        if self.fail:
            return Result.failure("smtp unavailable")
        return Result.success()


class FailingSaveRegistry(ServiceRegistry):
    def save(self, records):
        return Result.failure("disk full")


class FakeProcess:
    def __init__(self, returncode: int):
        self.returncode = None
        self._final_returncode = returncode

    async def communicate(self):
        self.returncode = self._final_returncode
        return b"", b""


@pytest.fixture
def config():
    return CheckerConfig(retry_count=2, retry_backoff_ms=0, timeout_ms=1000)


@pytest.fixture
def registry():
    manager = DatabaseManager("sqlite:///:memory:")
    manager.initialize_database()
    yield ServiceRegistry(manager)
    manager.close()


def seed(registry: ServiceRegistry, *records: ServiceRecord):
    assert registry.save(records).ok


def stored(registry: ServiceRegistry, service_id: str) -> ServiceRecord:
    return next(r for r in registry.load() if r.id == service_id)


@pytest.mark.asyncio
async def test_healthy_http_service_records_success(config, registry, make_service):
    seed(registry, make_service(id="api", name="Api"))
    notifier = RecordingNotifier()

    with respx.mock(assert_all_called=True) as mock:
        mock.get("http://svc.local:8080/").respond(200)
        summary = await CheckOrchestrator(config, registry, notifier).run()

    assert summary.checked == 1
    assert summary.failed == []
    assert summary.recovered == []
    assert summary.persisted is True
    assert notifier.alerts == []
    assert notifier.recoveries == []

    record = stored(registry, "api")
    assert record.triggered is False
    assert record.last_success_date is not None


@pytest.mark.asyncio
async def test_dead_ping_host_alerts_once(monkeypatch, config, registry, make_service):
    seed(registry, make_service(id="db", name="Db", action="PING", endpoint="10.0.0.9", port=None))
    notifier = RecordingNotifier()

    async def dead_host(*command, **kwargs):
        return FakeProcess(1)

    monkeypatch.setattr(asyncio, "create_subprocess_exec", dead_host)
    orchestrator = CheckOrchestrator(config, registry, notifier)

    first = await orchestrator.run()
    second = await orchestrator.run()

    assert first.failed == ["Db"]
    assert second.failed == []
    assert notifier.alerts == [["Db"]]

    record = stored(registry, "db")
    assert record.triggered is True
    assert record.alert_count == 1
    assert record.last_alert_date is not None


@pytest.mark.asyncio
async def test_triggered_socket_service_recovers(config, registry, make_service):
    server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    seed(
        registry,
        make_service(
            id="cache",
            name="Cache",
            action="SOCKET",
            endpoint="127.0.0.1",
            port=port,
            triggered=True,
            alert_count=4,
        ),
    )
    notifier = RecordingNotifier()

    try:
        summary = await CheckOrchestrator(config, registry, notifier).run()
    finally:
        server.close()
        await server.wait_closed()

    assert summary.recovered == ["Cache"]
    assert notifier.recoveries == [["Cache"]]
    assert notifier.alerts == []

    record = stored(registry, "cache")
    assert record.triggered is False
    assert record.alert_count == 4
    assert record.last_success_date is not None


@pytest.mark.asyncio
async def test_unknown_action_disables_service_without_probing(config, registry, make_service):
    seed(registry, make_service(id="odd", name="Odd", action="UNKNOWN"))
    probed = []

    async def spy(record, config):
        probed.append(record.id)
        return False

    probes = {action: spy for action in CheckAction}
    summary = await CheckOrchestrator(config, registry, RecordingNotifier(), probes=probes).run()

    assert probed == []
    assert summary.checked == 0
    assert summary.disabled == ["Odd"]
    assert stored(registry, "odd").enabled is False
    assert get_metrics().get_counter(MetricNames.SERVICES_DISABLED).count == 1


@pytest.mark.asyncio
async def test_disabled_services_are_skipped_and_untouched(config, registry, make_service):
    seed(registry, make_service(id="off", name="Off", enabled=False, triggered=True, alert_count=2))
    probed = []

    async def spy(record, config):
        probed.append(record.id)
        return True

    probes = {action: spy for action in CheckAction}
    notifier = RecordingNotifier()
    summary = await CheckOrchestrator(config, registry, notifier, probes=probes).run()

    assert probed == []
    assert summary.checked == 0
    assert notifier.alerts == [] and notifier.recoveries == []

    record = stored(registry, "off")
    assert record.enabled is False
    assert record.triggered is True
    assert record.alert_count == 2
    assert record.last_success_date is None


@pytest.mark.asyncio
async def test_probes_run_concurrently(registry, make_service):
    config = CheckerConfig(retry_count=1, retry_backoff_ms=0, timeout_ms=1000)
    seed(registry, *[make_service(id=f"s{i}", name=f"S{i}") for i in range(5)])
    in_flight = 0
    peak = 0

    async def slow(record, config):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.05)
        in_flight -= 1
        return False

    probes = {action: slow for action in CheckAction}
    summary = await CheckOrchestrator(config, registry, RecordingNotifier(), probes=probes).run()

    assert summary.checked == 5
    assert peak == 5


@pytest.mark.asyncio
async def test_raising_probe_counts_as_failure(config, registry, make_service):
    seed(registry, make_service(id="boom", name="Boom"))

    async def explode(record, config):
        raise RuntimeError("probe bug")

    probes = {action: explode for action in CheckAction}
    notifier = RecordingNotifier()
    summary = await CheckOrchestrator(config, registry, notifier, probes=probes).run()

    assert summary.failed == ["Boom"]
    assert notifier.alerts == [["Boom"]]


@pytest.mark.asyncio
async def test_notification_failure_still_persists_state(config, registry, make_service):
    seed(registry, make_service(id="api", name="Api"))

    async def down(record, config):
        return True

    probes = {action: down for action in CheckAction}
    notifier = RecordingNotifier(fail=True)
    orchestrator = CheckOrchestrator(config, registry, notifier, probes=probes)

    first = await orchestrator.run()
    second = await orchestrator.run()

    assert first.notified is False
    assert first.persisted is True
    assert stored(registry, "api").triggered is True
    # the failed alert is not resent on the next run
    assert notifier.alerts == [["Api"]]
    assert second.failed == []


@pytest.mark.asyncio
async def test_save_failure_is_reported_in_summary(config, make_service):
    manager = DatabaseManager("sqlite:///:memory:")
    manager.initialize_database()
    seed(ServiceRegistry(manager), make_service(id="api", name="Api"))

    async def down(record, config):
        return True

    probes = {action: down for action in CheckAction}
    notifier = RecordingNotifier()
    summary = await CheckOrchestrator(
        config, FailingSaveRegistry(manager), notifier, probes=probes
    ).run()

    assert summary.persisted is False
    assert summary.failed == ["Api"]
    assert notifier.alerts == [["Api"]]
    errors = get_metrics().get_counter(MetricNames.REGISTRY_ERRORS, labels={"operation": "save"})
    assert errors.count == 1
    manager.close()


@pytest.mark.asyncio
async def test_registry_load_failure_returns_empty_run(config):
    class BrokenRegistry:
        def load(self):
            raise ConnectionError("registry offline")

        def save(self, records):
            raise AssertionError("save must not be called")

    notifier = RecordingNotifier()
    summary = await CheckOrchestrator(config, BrokenRegistry(), notifier).run()

    assert summary.checked == 0
    assert summary.persisted is False
    assert notifier.alerts == [] and notifier.recoveries == []


def test_default_probe_table_is_used(config, registry):
    orchestrator = CheckOrchestrator(config, registry, RecordingNotifier())

    assert orchestrator.probes is PROBES


class ErrorLogCounter:
    def __init__(self):
        self.calls = []

    def __call__(self, *args, **kwargs):
        self.calls.append(args)


@pytest.mark.asyncio
async def test_failed_alert_email_is_logged_once(monkeypatch, config, registry, make_service):
    seed(registry, make_service(id="api", name="Api"))
    counter = ErrorLogCounter()
    monkeypatch.setattr(CheckerLogger, "log_notification_error", counter)

    async def smtp_down(message, **kwargs):
        raise OSError("connection refused")

    monkeypatch.setattr(aiosmtplib, "send", smtp_down)

    async def down(record, config):
        return True

    probes = {action: down for action in CheckAction}
    notifier = EmailNotifier(SmtpConfig(email_to=["ops@example.com"]))
    summary = await CheckOrchestrator(config, registry, notifier, probes=probes).run()

    assert summary.notified is False
    assert counter.calls == [("alert", "connection refused")]


@pytest.mark.asyncio
async def test_failed_save_is_logged_once(monkeypatch, config, registry, make_service):
    seed(registry, make_service(id="api", name="Api"))
    counter = ErrorLogCounter()
    monkeypatch.setattr(CheckerLogger, "log_registry_error", counter)

    async def corrupt(record, config):
        record.name = None  # violates NOT NULL on write-back
        return False

    probes = {action: corrupt for action in CheckAction}
    summary = await CheckOrchestrator(config, registry, RecordingNotifier(), probes=probes).run()

    assert summary.persisted is False
    assert len(counter.calls) == 1
    assert counter.calls[0][0] == "save"
