"""State machine for the process supervisor."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum, auto

from kiosk_resilience.errors import StateTransitionError


class SupervisorState(Enum):
    """Lifecycle states of the supervised kiosk window."""

    STARTING = auto()
    RUNNING = auto()
    RESTART_SCHEDULED = auto()
    RESTARTING = auto()
    HALTED_LIMIT_EXCEEDED = auto()
    SHUTDOWN = auto()


@dataclass
class StateContext:
    """Current state plus the transition history."""

    current_state: SupervisorState | None = None
    previous_state: SupervisorState | None = None
    _state_history: list[SupervisorState] = field(default_factory=list)

    def set_current_state(self, state: SupervisorState) -> None:
        """Set the current state and update history.

        Args:
            state: New current state
        """
        if self.current_state is not None:
            self.previous_state = self.current_state
        self.current_state = state
        self._state_history.append(state)

    def get_state_history(self) -> list[SupervisorState]:
        """Get the complete state transition history.

        Returns:
            List of states in chronological order
        """
        return self._state_history.copy()


# HALTED_LIMIT_EXCEEDED only leaves through the admin shutdown
SUPERVISOR_TRANSITIONS: tuple[tuple[SupervisorState, SupervisorState], ...] = (
    (SupervisorState.STARTING, SupervisorState.RUNNING),
    (SupervisorState.STARTING, SupervisorState.RESTART_SCHEDULED),
    (SupervisorState.STARTING, SupervisorState.HALTED_LIMIT_EXCEEDED),
    (SupervisorState.RUNNING, SupervisorState.RESTART_SCHEDULED),
    (SupervisorState.RUNNING, SupervisorState.HALTED_LIMIT_EXCEEDED),
    (SupervisorState.RESTART_SCHEDULED, SupervisorState.RESTARTING),
    (SupervisorState.RESTART_SCHEDULED, SupervisorState.HALTED_LIMIT_EXCEEDED),
    (SupervisorState.RESTARTING, SupervisorState.RUNNING),
    (SupervisorState.RESTARTING, SupervisorState.RESTART_SCHEDULED),
    (SupervisorState.RESTARTING, SupervisorState.HALTED_LIMIT_EXCEEDED),
    *((state, SupervisorState.SHUTDOWN) for state in SupervisorState if state is not SupervisorState.SHUTDOWN),
)


class StateMachine:
    """Table-driven state machine.

    Mutated only from the event loop thread, so no locking is needed.
    """

    def __init__(
        self,
        initial_state: SupervisorState,
        transitions: Iterable[tuple[SupervisorState, SupervisorState]] = (),
    ) -> None:
        """Initialize state machine.

        Args:
            initial_state: Initial state of the machine
            transitions: Allowed (from, to) pairs
        """
        self.context: StateContext = StateContext()
        self.context.set_current_state(initial_state)
        self._transitions: dict[SupervisorState, set[SupervisorState]] = defaultdict(set)
        for from_state, to_state in transitions:
            self._transitions[from_state].add(to_state)

    @classmethod
    def for_supervisor(cls) -> StateMachine:
        return cls(SupervisorState.STARTING, SUPERVISOR_TRANSITIONS)

    @property
    def current_state(self) -> SupervisorState:
        if self.context.current_state is None:
            msg = "State machine not properly initialized - no current state"
            raise RuntimeError(msg)
        return self.context.current_state

    def transition_to(self, to_state: SupervisorState) -> bool:
        """Transition to the specified state.

        Args:
            to_state: Target state

        Returns:
            True if transition was successful

        Raises:
            StateTransitionError: If transition is not allowed
        """
        current_state = self.current_state

        if to_state not in self._transitions[current_state]:
            raise StateTransitionError(
                f"Cannot transition from {current_state.name} to {to_state.name}",
                from_state=current_state,
                to_state=to_state,
            )

        self.context.set_current_state(to_state)
        return True
