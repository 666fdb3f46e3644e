"""
Report generation state machine.

    REQUESTED -> IN_PROGRESS -> DONE | CANCELLED | FATAL

Each poll maps the platform's processingStatus onto a ReportState and the
transition is checked against TRANSITIONS. Exhausting the attempt budget
raises ReportTimeout; FATAL raises ReportFatal with a configuration hint.
"""

import time
from dataclasses import dataclass
from enum import Enum

from .errors import ProviderError, ReportFatal, ReportTimeout
from .logging_config import get_logger

logger = get_logger(__name__)


class ReportState(str, Enum):
    REQUESTED = "REQUESTED"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    CANCELLED = "CANCELLED"
    FATAL = "FATAL"


TERMINAL_STATES = frozenset({ReportState.DONE, ReportState.CANCELLED, ReportState.FATAL})

TRANSITIONS = {
    ReportState.REQUESTED: frozenset(
        {ReportState.IN_PROGRESS, ReportState.DONE, ReportState.CANCELLED, ReportState.FATAL}
    ),
    ReportState.IN_PROGRESS: frozenset(
        {ReportState.IN_PROGRESS, ReportState.DONE, ReportState.CANCELLED, ReportState.FATAL}
    ),
    ReportState.DONE: frozenset(),
    ReportState.CANCELLED: frozenset(),
    ReportState.FATAL: frozenset(),
}

# Platform processingStatus -> state
STATUS_MAP = {
    "IN_QUEUE": ReportState.IN_PROGRESS,
    "IN_PROGRESS": ReportState.IN_PROGRESS,
    "DONE": ReportState.DONE,
    "CANCELLED": ReportState.CANCELLED,
    "FATAL": ReportState.FATAL,
}

FATAL_HINT = (
    "Report generation failed permanently. This is usually caused by a "
    "marketplace ID that does not match the seller account; check the "
    "credential's marketplace setting."
)


@dataclass
class ReportResult:
    report_id: str
    state: ReportState
    document_id: str | None = None
    attempts: int = 0


class ReportStateMachine:
    """Tracks one report through its lifecycle."""

    def __init__(self, report_id: str):
        self.report_id = report_id
        self.state = ReportState.REQUESTED
        self.document_id = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, processing_status: str, document_id: str | None = None) -> ReportState:
        """Apply one status observation."""
        new_state = STATUS_MAP.get(processing_status)
        if new_state is None:
            raise ProviderError(f"Unknown report processingStatus: {processing_status}")

        if new_state not in TRANSITIONS[self.state]:
            raise ProviderError(
                f"Illegal report transition {self.state.value} -> {new_state.value}"
            )

        if new_state != self.state:
            logger.debug(
                f"Report {self.state.value} -> {new_state.value}",
                extra={"report_id": self.report_id},
            )
        self.state = new_state

        if new_state == ReportState.DONE:
            if not document_id:
                raise ProviderError("Report is DONE but has no reportDocumentId")
            self.document_id = document_id

        return new_state


def poll_report(
    client,
    report_id: str,
    interval: float = 3.0,
    max_attempts: int = 20,
    sleep=time.sleep,
) -> ReportResult:
    """
    Poll a report until it reaches a terminal state.

    Blocks for up to ``interval * max_attempts`` seconds.

    Returns:
        ReportResult with state DONE or CANCELLED

    Raises:
        ReportFatal: If the platform reports FATAL
        ReportTimeout: If no terminal state is reached within the budget
    """
    machine = ReportStateMachine(report_id)

    for attempt in range(1, max_attempts + 1):
        sleep(interval)
        report = client.get_report(report_id)
        machine.advance(report.get("processingStatus"), report.get("reportDocumentId"))

        if machine.state == ReportState.FATAL:
            raise ReportFatal(FATAL_HINT, report_id=report_id)

        if machine.is_terminal:
            return ReportResult(
                report_id=report_id,
                state=machine.state,
                document_id=machine.document_id,
                attempts=attempt,
            )

    raise ReportTimeout(
        f"Report {report_id} not ready after {max_attempts} polls",
        report_id=report_id,
    )
