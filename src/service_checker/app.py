import asyncio
import os

from fastapi import FastAPI

from service_checker.config import load_config
from service_checker.logging import EventType, configure_logging, get_logger
from service_checker.metrics import get_metrics
from service_checker.middleware import add_logging_middleware
from service_checker.models import RunSummary
from service_checker.notifier import EmailNotifier
from service_checker.orchestrator import CheckOrchestrator
from service_checker.persistence import ServiceRegistry, init_database

app = FastAPI(title="Service Checker")

config = load_config(os.getenv("SERVICE_CHECKER_CONFIG", "service_checker.yml"))

configure_logging(config.log_level)
logger = get_logger("service_checker.app")
metrics = get_metrics()

add_logging_middleware(app, exclude_paths=["/health", "/v1/metrics", "/favicon.ico"])

_db_manager = init_database(config.database_url)
_orchestrator = CheckOrchestrator(
    config,
    registry=ServiceRegistry(_db_manager),
    notifier=EmailNotifier(config.smtp),
)

# One run at a time; the snapshot belongs to the run that loaded it
_run_lock = asyncio.Lock()

logger.log_event(
    EventType.CHECKER_START,
    "Service checker starting up",
    metadata={
        "retry_count": config.retry_count,
        "retry_backoff_ms": config.retry_backoff_ms,
        "timeout_ms": config.timeout_ms,
    },
)


def _get_orchestrator() -> CheckOrchestrator:
    return _orchestrator


@app.api_route("/v1/checks/run", methods=["GET", "POST"])
async def run_checks() -> RunSummary:
    """
    Run one full check cycle and acknowledge it.

    Always answers 200: failing services are reported in the body, and
    notifier or registry problems are logged rather than surfaced.
    """
    async with _run_lock:
        try:
            return await _get_orchestrator().run()
        except Exception as e:
            logger.error(
                f"Check run aborted: {e}",
                event_type=EventType.RUN_ERROR,
                exc_info=True,
            )
            return RunSummary(notified=False, persisted=False)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/v1/metrics")
def get_metrics_endpoint():
    return metrics.get_all_metrics()


@app.get("/v1/services/{serviceId}/metrics")
def get_service_metrics_endpoint(serviceId: str):
    return metrics.get_service_metrics(serviceId)


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
