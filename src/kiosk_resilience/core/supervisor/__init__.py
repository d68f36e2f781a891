"""Kiosk window supervision: state machine, restart policy, display port."""

from kiosk_resilience.core.supervisor.display import SubprocessDisplayPort
from kiosk_resilience.core.supervisor.heartbeat import FileHeartbeat
from kiosk_resilience.core.supervisor.restart_policy import RestartPolicy
from kiosk_resilience.core.supervisor.state_machine import (
    StateContext,
    StateMachine,
    SupervisorState,
)
from kiosk_resilience.core.supervisor.supervisor import ProcessSupervisor, SupervisorStatus

__all__ = [
    "FileHeartbeat",
    "ProcessSupervisor",
    "RestartPolicy",
    "StateContext",
    "StateMachine",
    "SubprocessDisplayPort",
    "SupervisorState",
    "SupervisorStatus",
]
