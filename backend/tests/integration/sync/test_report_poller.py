"""Tests for the report generation state machine and poller."""

import pytest

from integrations.errors import ProviderError, ReportFatal, ReportTimeout
from integrations.report_poller import ReportState, ReportStateMachine, poll_report


class ScriptedReports:
    """Returns one scripted status per get_report call."""

    def __init__(self, *statuses, document_id="DOC-1"):
        self.statuses = list(statuses)
        self.document_id = document_id
        self.calls = 0

    def get_report(self, report_id):
        status = self.statuses[min(self.calls, len(self.statuses) - 1)]
        self.calls += 1
        report = {"reportId": report_id, "processingStatus": status}
        if status == "DONE":
            report["reportDocumentId"] = self.document_id
        return report


def test_polls_until_done(no_sleep):
    client = ScriptedReports("IN_QUEUE", "IN_PROGRESS", "DONE")

    result = poll_report(client, "R1", interval=2.5, max_attempts=5, sleep=no_sleep)

    assert result.state == ReportState.DONE
    assert result.document_id == "DOC-1"
    assert result.attempts == 3
    assert no_sleep.calls == [2.5, 2.5, 2.5]


def test_cancelled_is_terminal_without_document(no_sleep):
    result = poll_report(ScriptedReports("CANCELLED"), "R1", sleep=no_sleep)

    assert result.state == ReportState.CANCELLED
    assert result.document_id is None


def test_fatal_raises_with_configuration_hint(no_sleep):
    with pytest.raises(ReportFatal) as exc:
        poll_report(ScriptedReports("IN_PROGRESS", "FATAL"), "R1", sleep=no_sleep)

    assert "marketplace" in str(exc.value)
    assert exc.value.retryable is False


def test_attempt_budget_exhaustion_raises_timeout(no_sleep):
    client = ScriptedReports("IN_PROGRESS")

    with pytest.raises(ReportTimeout):
        poll_report(client, "R1", interval=1, max_attempts=4, sleep=no_sleep)

    assert client.calls == 4
    assert len(no_sleep.calls) == 4


def test_terminal_state_rejects_further_transitions():
    machine = ReportStateMachine("R1")
    machine.advance("DONE", "DOC-1")

    with pytest.raises(ProviderError):
        machine.advance("IN_PROGRESS")


def test_unknown_status_is_an_error():
    with pytest.raises(ProviderError):
        ReportStateMachine("R1").advance("EXPLODED")


def test_done_without_document_is_an_error():
    with pytest.raises(ProviderError):
        ReportStateMachine("R1").advance("DONE")
