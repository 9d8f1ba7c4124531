"""
Check orchestrator: one complete run of load -> probe all -> transition ->
notify + persist.
"""

import asyncio
import time
from typing import Awaitable, Dict, List, Optional, Protocol

from service_checker.config import CheckerConfig
from service_checker.logging import get_logger
from service_checker.metrics import MetricNames, get_metrics
from service_checker.models import (
    CheckAction,
    Result,
    RunSummary,
    ServiceCheckResult,
    ServiceRecord,
)
from service_checker.probes import PROBES, Probe
from service_checker.transitions import apply_transitions


class Registry(Protocol):
    def load(self) -> List[ServiceRecord]: ...

    def save(self, records: List[ServiceRecord]) -> Result: ...


class Notifier(Protocol):
    async def send_alert(self, names: List[str]) -> Result: ...

    async def send_recover(self, names: List[str]) -> Result: ...


class CheckOrchestrator:
    """Runs one check cycle over a snapshot of the service registry.

    Registry calls are blocking and run in a worker thread. Probes run as one
    asyncio task per service and are all joined before any transition is
    computed.
    """

    def __init__(
        self,
        config: CheckerConfig,
        registry: Registry,
        notifier: Notifier,
        probes: Optional[Dict[CheckAction, Probe]] = None,
    ):
        self.config = config
        self.registry = registry
        self.notifier = notifier
        self.probes = probes or PROBES
        self.logger = get_logger("service_checker.orchestrator")
        self.metrics = get_metrics()

    async def run(self) -> RunSummary:
        start = time.monotonic()
        self.metrics.increment_counter(MetricNames.RUNS_TOTAL)

        try:
            records = await asyncio.to_thread(self.registry.load)
        except Exception as e:
            self.logger.log_registry_error("load", e, exc_info=True)
            self.metrics.increment_counter(
                MetricNames.REGISTRY_ERRORS, labels={"operation": "load"}
            )
            return RunSummary(persisted=False, duration_ms=self._elapsed_ms(start))

        self.logger.log_run_start(len(records))

        to_probe: List[ServiceRecord] = []
        probe_calls: List[Awaitable[bool]] = []
        disabled: List[str] = []
        for record in records:
            if not record.enabled:
                continue

            action = CheckAction.parse(record.action)
            probe = self.probes.get(action) if action else None
            if probe is None:
                record.enabled = False
                disabled.append(record.name)
                self.logger.log_service_disabled(record.id, record.action)
                self.metrics.increment_counter(MetricNames.SERVICES_DISABLED)
                continue

            to_probe.append(record)
            probe_calls.append(probe(record, self.config))

        verdicts = await asyncio.gather(*probe_calls, return_exceptions=True)
        results = [
            ServiceCheckResult(record, self._verdict(record, verdict))
            for record, verdict in zip(to_probe, verdicts)
        ]

        outcome = apply_transitions(results)

        notified, persist_result = await asyncio.gather(
            self._notify(outcome.failed_names, outcome.recovered_names),
            self._persist(records),
        )

        duration_ms = self._elapsed_ms(start)
        self.metrics.record_timer(MetricNames.RUN_DURATION, duration_ms)
        self.logger.log_run_end(
            duration_ms, len(results), outcome.failed_names, outcome.recovered_names
        )

        return RunSummary(
            checked=len(results),
            disabled=disabled,
            failed=outcome.failed_names,
            recovered=outcome.recovered_names,
            notified=notified,
            persisted=persist_result.ok,
            duration_ms=duration_ms,
        )

    def _verdict(self, record: ServiceRecord, verdict) -> bool:
        if isinstance(verdict, BaseException):
            self.logger.error(
                f"Probe for {record.name} raised: {verdict!r}",
                service_id=record.id,
            )
            return True
        return bool(verdict)

    async def _notify(self, failed_names: List[str], recovered_names: List[str]) -> bool:
        """Send both batches concurrently; True when both were delivered."""
        results = await asyncio.gather(
            self.notifier.send_alert(failed_names),
            self.notifier.send_recover(recovered_names),
            return_exceptions=True,
        )

        delivered = True
        for kind, result in zip(("alert", "recover"), results):
            if isinstance(result, BaseException):
                result = Result.failure(result)
            if not result.ok:
                # triggered stays set; the alert is not retried next run
                self.logger.log_notification_error(kind, result.error)
                delivered = False
        return delivered

    async def _persist(self, records: List[ServiceRecord]) -> Result:
        try:
            result = await asyncio.to_thread(self.registry.save, records)
        except Exception as e:
            result = Result.failure(e)

        if not result.ok:
            self.logger.log_registry_error("save", result.error)
            self.metrics.increment_counter(
                MetricNames.REGISTRY_ERRORS, labels={"operation": "save"}
            )
        return result

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.monotonic() - start) * 1000
