from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

import pytest

from openbot.approval import (
    ApprovalDecision,
    ApprovalGate,
    ApprovalPolicy,
    ApprovalRequest,
    SandboxMode,
    resolve_approval_policy,
)
from openbot.storage import ApprovalEvent, SessionRecorder, list_events


class StubOperator:
    def __init__(self, answer: bool | None = True, delay: float = 0.0) -> None:
        self.answer = answer
        self.delay = delay
        self.asked: list[ApprovalRequest] = []

    async def confirm(self, request: ApprovalRequest) -> bool | None:
        self.asked.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.answer


REQUEST = ApprovalRequest(call_id="call-1", command="rm -rf build", cwd="/tmp/work")


def decide(gate: ApprovalGate, sandbox: str, policy: str, request: ApprovalRequest = REQUEST) -> ApprovalDecision:
    return asyncio.run(gate.decide(sandbox, policy, request))


def test_never_policy_denies_without_asking() -> None:
    operator = StubOperator(answer=True)
    gate = ApprovalGate(operator)

    assert decide(gate, "workspace-write", "never") is ApprovalDecision.DENY
    assert operator.asked == []


@pytest.mark.parametrize(
    ("answer", "expected"),
    [
        (True, ApprovalDecision.APPROVE),
        (False, ApprovalDecision.DENY),
        (None, ApprovalDecision.DENY),
    ],
)
def test_on_request_follows_operator(answer: bool | None, expected: ApprovalDecision) -> None:
    operator = StubOperator(answer=answer)
    gate = ApprovalGate(operator)

    assert decide(gate, "read-only", "on-request") is expected
    assert operator.asked == [REQUEST]


def test_operator_timeout_denies() -> None:
    gate = ApprovalGate(StubOperator(answer=True, delay=5), timeout=0.05)

    assert decide(gate, "read-only", "untrusted") is ApprovalDecision.DENY


def test_missing_operator_denies() -> None:
    assert decide(ApprovalGate(), "read-only", "on-request") is ApprovalDecision.DENY


def test_on_failure_approves_escalated_retry_in_sandbox() -> None:
    operator = StubOperator(answer=False)
    gate = ApprovalGate(operator)
    retry = ApprovalRequest(call_id="call-2", command="pytest", escalated_retry=True)

    assert decide(gate, "workspace-write", "on-failure", retry) is ApprovalDecision.APPROVE
    assert operator.asked == []


def test_on_failure_without_sandbox_asks_operator() -> None:
    operator = StubOperator(answer=False)
    gate = ApprovalGate(operator)
    retry = ApprovalRequest(call_id="call-2", command="pytest", escalated_retry=True)

    assert decide(gate, "danger-full-access", "on-failure", retry) is ApprovalDecision.DENY
    assert operator.asked == [retry]


def test_decisions_are_recorded(tmp_path: Path) -> None:
    recorder = SessionRecorder.open(tmp_path, "s1", model="m", started_at=datetime.now(timezone.utc))
    gate = ApprovalGate(StubOperator(answer=True), recorder=recorder)

    decide(gate, "read-only", "on-request")
    decide(gate, "read-only", "never")
    recorder.close()

    events = [event for event in list_events(tmp_path, "s1") if isinstance(event, ApprovalEvent)]
    assert [event.decision for event in events] == ["approve", "deny"]
    assert events[0].sandbox_mode == "read-only"
    assert events[0].approval_policy == "on-request"
    assert events[1].command == "rm -rf build"


def test_cancellation_records_a_denial(tmp_path: Path) -> None:
    recorder = SessionRecorder.open(tmp_path, "s1", model="m", started_at=datetime.now(timezone.utc))
    operator = StubOperator(answer=True, delay=60)
    gate = ApprovalGate(operator, recorder=recorder)

    async def scenario() -> None:
        task = asyncio.create_task(gate.decide("read-only", "on-request", REQUEST))
        while not operator.asked:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    recorder.close()

    events = [event for event in list_events(tmp_path, "s1") if isinstance(event, ApprovalEvent)]
    assert len(events) == 1
    assert events[0].decision == "deny"
    assert "cancelled" in events[0].reason


def test_explicit_deny_skips_operator() -> None:
    operator = StubOperator(answer=True)
    gate = ApprovalGate(operator)

    assert gate.deny("read-only", "on-request", REQUEST, "run is stopping") is ApprovalDecision.DENY
    assert operator.asked == []


def test_policy_defaults_follow_sandbox() -> None:
    assert resolve_approval_policy("read-only") is ApprovalPolicy.ON_REQUEST
    assert resolve_approval_policy(SandboxMode.WORKSPACE_WRITE) is ApprovalPolicy.ON_FAILURE
    assert resolve_approval_policy("danger-full-access") is ApprovalPolicy.NEVER
    assert resolve_approval_policy("danger-full-access", "untrusted") is ApprovalPolicy.UNTRUSTED
    assert resolve_approval_policy("read-only", "") is ApprovalPolicy.ON_REQUEST
    with pytest.raises(ValueError):
        resolve_approval_policy("wide-open")


def test_request_description_mentions_context() -> None:
    text = ApprovalRequest(call_id="c", command="git push", cwd="/w", reason="needs network").describe()

    assert "git push" in text
    assert "cwd: /w" in text
    assert "reason: needs network" in text
