"""Approval gate for engine requests to run side-effecting commands.

The gate turns ``(sandbox mode, approval policy, request)`` into a final
approve/deny decision. Anything short of an explicit approval is a denial:
a request under the ``never`` policy, an operator timeout, a closed input
stream, and cancellation all deny. Every decision is written to the session
record when one is attached.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .storage.models import ApprovalEvent
from .storage.recorder import SessionRecorder

logger = logging.getLogger(__name__)


class SandboxMode(str, Enum):
    READ_ONLY = "read-only"
    WORKSPACE_WRITE = "workspace-write"
    DANGER_FULL_ACCESS = "danger-full-access"

    @property
    def restricted(self) -> bool:
        return self is not SandboxMode.DANGER_FULL_ACCESS


class ApprovalPolicy(str, Enum):
    NEVER = "never"
    ON_REQUEST = "on-request"
    UNTRUSTED = "untrusted"
    ON_FAILURE = "on-failure"


class ApprovalDecision(str, Enum):
    APPROVE = "approve"
    DENY = "deny"


DEFAULT_POLICIES: dict[SandboxMode, ApprovalPolicy] = {
    SandboxMode.READ_ONLY: ApprovalPolicy.ON_REQUEST,
    SandboxMode.WORKSPACE_WRITE: ApprovalPolicy.ON_FAILURE,
    SandboxMode.DANGER_FULL_ACCESS: ApprovalPolicy.NEVER,
}


def resolve_approval_policy(
    sandbox_mode: SandboxMode | str,
    explicit: ApprovalPolicy | str | None = None,
) -> ApprovalPolicy:
    """Pick the approval policy from configuration.

    An explicit setting always wins; otherwise the sandbox mode selects the
    default from :data:`DEFAULT_POLICIES`. Unknown values raise ``ValueError``.
    """

    if explicit is not None and explicit != "":
        return ApprovalPolicy(explicit)
    return DEFAULT_POLICIES[SandboxMode(sandbox_mode)]


@dataclass(frozen=True, slots=True)
class ApprovalRequest:
    """A command the engine wants to run outside its current permissions."""

    call_id: str
    command: str
    kind: str = "exec"
    cwd: str | None = None
    reason: str | None = None
    escalated_retry: bool = False

    def describe(self) -> str:
        lines = [f"[approval] {self.kind}: {self.command}"]
        if self.cwd:
            lines.append(f"  cwd: {self.cwd}")
        if self.reason:
            lines.append(f"  reason: {self.reason}")
        if self.escalated_retry:
            lines.append("  retry of a command that failed inside the sandbox")
        return "\n".join(lines)


class Operator(Protocol):
    async def confirm(self, request: ApprovalRequest) -> bool | None:
        """Return True to approve, False to deny, None when no answer can be given."""
        ...


class ApprovalGate:
    """Policy-driven decision function for execution approval requests."""

    def __init__(
        self,
        operator: Operator | None = None,
        *,
        timeout: float = 300.0,
        recorder: SessionRecorder | None = None,
    ) -> None:
        self._operator = operator
        self._timeout = timeout
        self._recorder = recorder

    def attach(self, recorder: SessionRecorder | None) -> None:
        self._recorder = recorder

    async def decide(
        self,
        sandbox_mode: SandboxMode | str,
        approval_policy: ApprovalPolicy | str,
        request: ApprovalRequest,
    ) -> ApprovalDecision:
        sandbox = SandboxMode(sandbox_mode)
        policy = ApprovalPolicy(approval_policy)

        if policy is ApprovalPolicy.NEVER:
            return self._finish(
                sandbox,
                policy,
                request,
                ApprovalDecision.DENY,
                "approval requested although the policy is 'never'",
            )

        if policy is ApprovalPolicy.ON_FAILURE and request.escalated_retry and sandbox.restricted:
            return self._finish(
                sandbox,
                policy,
                request,
                ApprovalDecision.APPROVE,
                "escalated retry of a command that failed inside the sandbox",
            )

        return await self._ask_operator(sandbox, policy, request)

    def deny(
        self,
        sandbox_mode: SandboxMode | str,
        approval_policy: ApprovalPolicy | str,
        request: ApprovalRequest,
        reason: str,
    ) -> ApprovalDecision:
        """Deny without consulting anyone; used while a run is shutting down."""

        return self._finish(
            SandboxMode(sandbox_mode), ApprovalPolicy(approval_policy), request, ApprovalDecision.DENY, reason
        )

    async def _ask_operator(
        self,
        sandbox: SandboxMode,
        policy: ApprovalPolicy,
        request: ApprovalRequest,
    ) -> ApprovalDecision:
        if self._operator is None:
            return self._finish(sandbox, policy, request, ApprovalDecision.DENY, "no operator available")

        try:
            answer = await asyncio.wait_for(self._operator.confirm(request), timeout=self._timeout)
        except asyncio.TimeoutError:
            return self._finish(
                sandbox,
                policy,
                request,
                ApprovalDecision.DENY,
                f"no operator response within {self._timeout:g}s",
            )
        except asyncio.CancelledError:
            self._finish(sandbox, policy, request, ApprovalDecision.DENY, "cancelled while waiting for operator")
            raise

        if answer is True:
            return self._finish(sandbox, policy, request, ApprovalDecision.APPROVE, "approved by operator")
        if answer is None:
            return self._finish(sandbox, policy, request, ApprovalDecision.DENY, "operator input unavailable")
        return self._finish(sandbox, policy, request, ApprovalDecision.DENY, "denied by operator")

    def _finish(
        self,
        sandbox: SandboxMode,
        policy: ApprovalPolicy,
        request: ApprovalRequest,
        decision: ApprovalDecision,
        reason: str,
    ) -> ApprovalDecision:
        logger.info(
            "Approval decision",
            extra={
                "call_id": request.call_id,
                "command": request.command,
                "decision": decision.value,
                "policy": policy.value,
                "reason": reason,
            },
        )
        if self._recorder is not None:
            self._recorder.record(
                ApprovalEvent(
                    call_id=request.call_id,
                    command=request.command,
                    sandbox_mode=sandbox.value,
                    approval_policy=policy.value,
                    decision=decision.value,
                    reason=reason,
                )
            )
        return decision


__all__ = [
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalPolicy",
    "ApprovalRequest",
    "DEFAULT_POLICIES",
    "Operator",
    "SandboxMode",
    "resolve_approval_policy",
]
