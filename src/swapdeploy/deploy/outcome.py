"""
Typed result of one deployment attempt.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from swapdeploy.exceptions import SwapDeployError
from swapdeploy.tasks.graph import TaskMetric
from .install_status import InstallStatus
from .plan import DeploymentPlan, Strategy


class OutcomeKind(Enum):
    INSTALLED = "installed"
    SWAPPED = "swapped"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class DeploymentOutcome:
    """
    What a deployment did.

    Attributes:
        kind: INSTALLED, SWAPPED, SKIPPED or FAILED
        reason: Human readable explanation
        strategy: Strategy that ran (None when skipped or failed before choosing)
        plan: Computed plan (None when no diff was needed)
        install_status: Package manager status of a reinstall
        error: Engine error behind a FAILED outcome
        metrics: Timings of every task of the deployment graph
    """
    kind: OutcomeKind
    reason: str
    strategy: Optional[Strategy] = None
    plan: Optional[DeploymentPlan] = None
    install_status: Optional[InstallStatus] = None
    error: Optional[SwapDeployError] = None
    metrics: list[TaskMetric] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.kind != OutcomeKind.FAILED

    @classmethod
    def skipped(cls, reason: str, plan: Optional[DeploymentPlan] = None) -> 'DeploymentOutcome':
        return cls(OutcomeKind.SKIPPED, reason, plan=plan, install_status=InstallStatus.SKIPPED_INSTALL)

    @classmethod
    def failed(
        cls,
        reason: str,
        error: Optional[SwapDeployError] = None,
        strategy: Optional[Strategy] = None,
        plan: Optional[DeploymentPlan] = None,
        install_status: Optional[InstallStatus] = None
    ) -> 'DeploymentOutcome':
        return cls(OutcomeKind.FAILED, reason, strategy, plan, install_status, error)

    def to_dict(self) -> dict[str, Any]:
        """Structured form for --json output."""
        return {
            "kind": self.kind.value,
            "reason": self.reason,
            "strategy": self.strategy.value if self.strategy else None,
            "plan": self.plan.to_dict() if self.plan else None,
            "install_status": self.install_status.value if self.install_status else None,
            "error": self._error_dict(),
            "metrics": [metric.to_dict() for metric in self.metrics],
        }

    def _error_dict(self) -> Optional[dict[str, Any]]:
        if self.error is None:
            return None
        detail = {
            "type": type(self.error).__name__,
            "message": self.error.message,
            "kind": getattr(self.error, "kind", None),
        }
        # Which unit or which device operation failed, when the error knows
        for attribute in ("unit", "operation", "serial", "path"):
            value = getattr(self.error, attribute, None)
            if value is not None:
                detail[attribute] = value
        return detail
