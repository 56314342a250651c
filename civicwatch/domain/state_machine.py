from __future__ import annotations

from dataclasses import dataclass

from civicwatch.domain.states import WORKFLOW_TRANSITIONS, ReportStatus


@dataclass(frozen=True)
class StatusChange:
    from_status: ReportStatus | None
    to_status: ReportStatus
    on_workflow: bool


class StatusTracker:
    """Computes the from/to pair for a status update.

    Any of the six statuses may be set by a moderator; the workflow graph is
    only consulted to flag changes that skip or reverse steps.
    """

    def change(self, current: str | None, target: ReportStatus) -> StatusChange | None:
        previous = ReportStatus(current) if current else None
        if previous == target:
            return None
        if previous is None:
            return StatusChange(from_status=None, to_status=target, on_workflow=False)
        return StatusChange(
            from_status=previous,
            to_status=target,
            on_workflow=target in WORKFLOW_TRANSITIONS.get(previous, set()),
        )
