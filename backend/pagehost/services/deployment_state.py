# pagehost/services/deployment_state.py

from datetime import datetime

from pagehost.core.errors import InvalidStateTransition
from pagehost.models.base import utcnow
from pagehost.models.deployment import TERMINAL_RUN_STATUSES, DomainDeployment

ALLOWED_TRANSITIONS = {
    "pending": {
        "deploying",
        "failed",
        "cancelled",
    },
    "deploying": {
        "deployed",
        "failed",
        "cancelled",
    },
}


def transition(
    run: DomainDeployment,
    new_status: str,
    *,
    now: datetime | None = None,
) -> DomainDeployment:
    current = run.status

    if current == new_status and current not in TERMINAL_RUN_STATUSES:
        return run

    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if new_status not in allowed:
        raise InvalidStateTransition(
            f"Cannot transition run {run.run_id} from {current} to {new_status}"
        )

    if new_status in TERMINAL_RUN_STATUSES:
        run.completed_at = now or utcnow()

    run.status = new_status
    return run
