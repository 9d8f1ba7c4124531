"""
Reachability probes for monitored services.

Each probe takes a service record and the checker configuration and returns
True when the service is failing. Probes never raise: transport errors,
timeouts and bad responses all count as failed attempts, and only running
out of attempts produces a failed verdict.
"""

import asyncio
from typing import Awaitable, Callable, Dict

import httpx

from service_checker.config import CheckerConfig
from service_checker.logging import get_logger
from service_checker.metrics import MetricNames, Timer, get_metrics
from service_checker.models import CheckAction, ServiceRecord
from service_checker.retry import Sleep, run_with_retries

logger = get_logger("service_checker.probes")
metrics = get_metrics()

Probe = Callable[..., Awaitable[bool]]


class ProbeError(Exception):
    """A probe attempt reached the service but the answer counts as down."""


async def check_http(
    record: ServiceRecord, config: CheckerConfig, sleep: Sleep = asyncio.sleep
) -> bool:
    """GET ``endpoint:port`` without following redirects.

    Any status below 500 means the host answered and is reachable.
    """
    target = f"{record.endpoint}:{record.port}"
    if record.port is None:
        return _missing_port(record, CheckAction.GET)

    async with httpx.AsyncClient(
        verify=config.verify_tls,
        follow_redirects=False,
        timeout=config.http_request_timeout_ms / 1000.0,
    ) as client:

        async def get_once():
            response = await client.get(target)
            if response.status_code >= 500:
                raise ProbeError(f"HTTP {response.status_code}")

        return await _probe(
            record, CheckAction.GET, target, get_once, config.timeout_seconds, config, sleep
        )


async def check_ping(
    record: ServiceRecord, config: CheckerConfig, sleep: Sleep = asyncio.sleep
) -> bool:
    """Ping ``endpoint`` with the system ping binary.

    The host is alive when at least ``ping_min_replies`` replies arrive
    before the deadline, which is when ping exits 0.
    """
    seconds = max(1, round(config.timeout_seconds))
    # spread the echo requests so all of them go out before the deadline;
    # 0.2s is the shortest interval ping allows an unprivileged user
    interval = max(0.2, seconds / config.ping_min_replies)
    command = [
        "ping",
        "-n",
        "-c",
        str(config.ping_min_replies),
        "-i",
        f"{interval:.1f}",
        "-w",
        str(seconds),
        "-W",
        str(seconds),
        record.endpoint,
    ]

    async def ping_once():
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await proc.communicate()
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip() if stderr else ""
            raise ProbeError(detail or f"host not alive (ping exit {proc.returncode})")

    # ping enforces its own deadline; the watchdog only catches a ping that never exits
    watchdog = seconds * 2
    return await _probe(
        record, CheckAction.PING, record.endpoint, ping_once, watchdog, config, sleep
    )


async def check_socket(
    record: ServiceRecord, config: CheckerConfig, sleep: Sleep = asyncio.sleep
) -> bool:
    """Open a TCP connection to ``endpoint:port`` and close it right away."""
    target = f"{record.endpoint}:{record.port}"
    if record.port is None:
        return _missing_port(record, CheckAction.SOCKET)

    async def connect_once():
        _, writer = await asyncio.open_connection(record.endpoint, record.port)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            # connect already succeeded
            pass

    return await _probe(
        record, CheckAction.SOCKET, target, connect_once, config.timeout_seconds, config, sleep
    )


PROBES: Dict[CheckAction, Probe] = {
    CheckAction.GET: check_http,
    CheckAction.PING: check_ping,
    CheckAction.SOCKET: check_socket,
}


async def _probe(
    record: ServiceRecord,
    action: CheckAction,
    target: str,
    once: Callable[[], Awaitable[None]],
    timeout: float,
    config: CheckerConfig,
    sleep: Sleep,
) -> bool:
    logger.log_probe_start(record.id, action.value, target)
    label = f"{action.value} {target}"
    attempts = 0

    async def attempt() -> bool:
        nonlocal attempts
        attempts += 1
        metrics.increment_counter(MetricNames.PROBE_ATTEMPTS, service_id=record.id)

        try:
            await asyncio.wait_for(once(), timeout=timeout)
        except asyncio.TimeoutError:
            error = f"timed out after {timeout:.1f}s"
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            return False

        metrics.increment_counter(MetricNames.PROBE_ATTEMPT_FAILURES, service_id=record.id)
        logger.log_probe_attempt_failed(
            label, attempts, config.retry_count, error, service_id=record.id
        )
        return True

    with Timer(metrics, MetricNames.PROBE_DURATION, service_id=record.id) as timer:
        failed = await run_with_retries(
            attempt,
            retry_count=config.retry_count,
            backoff_ms=config.retry_backoff_ms,
            label=label,
            sleep=sleep,
        )

    if failed:
        metrics.increment_counter(MetricNames.PROBE_FAILURES, service_id=record.id)
    logger.log_probe_result(record.id, failed, timer.duration_ms)
    return failed


def _missing_port(record: ServiceRecord, action: CheckAction) -> bool:
    logger.error(
        f"{action.value} probe for {record.name} has no port configured",
        service_id=record.id,
        metadata={"endpoint": record.endpoint},
    )
    metrics.increment_counter(MetricNames.PROBE_FAILURES, service_id=record.id)
    return True
