"""
Failure/recovery transitions.

Turns one run's probe verdicts into updates of the persisted alert fields,
so a service is alerted once when it goes down, stays quiet while it is
down, and is reported once when it comes back.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

from service_checker.logging import get_logger
from service_checker.models import ServiceCheckResult, TransitionOutcome

logger = get_logger("service_checker.transitions")


def apply_transitions(
    results: Iterable[ServiceCheckResult], now: Optional[datetime] = None
) -> TransitionOutcome:
    """Mutate each enabled record in place and collect the names that changed state.

    Disabled records are left untouched and never reported.
    """
    now = now or datetime.now(timezone.utc)
    outcome = TransitionOutcome()

    for result in results:
        record = result.record
        if not record.enabled:
            continue

        if result.failed:
            if record.triggered:
                # already alerted for this outage
                continue
            record.last_alert_date = now
            record.triggered = True
            record.alert_count = (record.alert_count or 0) + 1
            outcome.failed_names.append(record.name)
            logger.log_transition(record.id, record.name, recovered=False)
        else:
            record.last_success_date = now
            if record.triggered:
                record.triggered = False
                outcome.recovered_names.append(record.name)
                logger.log_transition(record.id, record.name, recovered=True)

    return outcome
