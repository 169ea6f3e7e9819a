"""
Device deployment subsystem.

Plans a deployment from two archive snapshots and executes it against one
device, either as a full reinstall or as a live swap of modified code units.

Public API:
    - DeviceChannel: Protocol interface
    - DeviceChannelFactory: Parse device strings
    - AdbDeviceChannel: adb implementation
    - InstallStatus, InstallResult: Package manager outcomes
    - DeploymentPlan, Strategy, compute_plan: Diffing
    - SwapOrchestrator, DeployState: Deployment state machine
    - DeploymentOutcome, OutcomeKind: Result types
    - LiveRedefiner, JsonWireAttacher: Live code replacement
    - DeploymentHistory: Snapshots of deployed archives
"""

from .base import DeviceChannel, InstallResult
from .install_status import InstallStatus, parse_install_output, requires_uninstall
from .adb_channel import AdbDeviceChannel
from .factory import DeviceChannelFactory
from .plan import DeploymentPlan, Strategy, compute_plan
from .outcome import DeploymentOutcome, OutcomeKind
from .redefiner import (
    DebugAttacher,
    DebugSession,
    LiveRedefiner,
    RedefineResult,
    JsonWireAttacher,
)
from .orchestrator import SwapOrchestrator, DeployState
from .history import DeploymentHistory

__all__ = [
    # Protocol and types
    "DeviceChannel",
    "InstallResult",
    "InstallStatus",
    "parse_install_output",
    "requires_uninstall",

    # Factory and implementations
    "DeviceChannelFactory",
    "AdbDeviceChannel",

    # Planning
    "DeploymentPlan",
    "Strategy",
    "compute_plan",

    # Orchestration
    "SwapOrchestrator",
    "DeployState",
    "DeploymentOutcome",
    "OutcomeKind",

    # Live swap
    "DebugAttacher",
    "DebugSession",
    "LiveRedefiner",
    "RedefineResult",
    "JsonWireAttacher",

    # History
    "DeploymentHistory",
]
