"""
Runtime state machine - the coarse lifecycle of a hinge runtime.

Manifesto:
    Boot, plugin loading, running and shutdown happen in a fixed order. A
    transition table makes illegal moves (``running`` straight back to
    ``initializing``) fail loudly instead of leaving the runtime half-alive.

Architecture:
    ::

        uninitialized ──► initializing ──► loading_plugins ──► ready ◄──► running
                               │                  │              │           │
                               └────────► error ◄─┴──────────────┴───────────┘
                                            │                    │           │
                                            ├──► initializing    ▼           ▼
                                            └──────────────────► shutdown ──► uninitialized

Examples:
    >>> sm = RuntimeStateMachine()
    >>> await sm.transition_to(RuntimeState.INITIALIZING)
    >>> sm.can_transition_to(RuntimeState.RUNNING)
    False

Guardrails:
    ❌ DON'T: use ``force_state`` in normal control flow
    ✅ DO: reserve it for recovery tooling; it is logged as a warning

Tags:
    state-machine, lifecycle, runtime, hinge-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import inspect
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from hinge.core.errors import InvalidTransitionError
from hinge.core.logging import get_logger

logger = get_logger(__name__)

MAX_HISTORY = 100


class RuntimeState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    LOADING_PLUGINS = "loading_plugins"
    READY = "ready"
    RUNNING = "running"
    ERROR = "error"
    SHUTDOWN = "shutdown"


VALID_TRANSITIONS: dict[RuntimeState, tuple[RuntimeState, ...]] = {
    RuntimeState.UNINITIALIZED: (RuntimeState.INITIALIZING,),
    RuntimeState.INITIALIZING: (RuntimeState.LOADING_PLUGINS, RuntimeState.ERROR),
    RuntimeState.LOADING_PLUGINS: (RuntimeState.READY, RuntimeState.ERROR),
    RuntimeState.READY: (RuntimeState.RUNNING, RuntimeState.SHUTDOWN, RuntimeState.ERROR),
    RuntimeState.RUNNING: (RuntimeState.READY, RuntimeState.SHUTDOWN, RuntimeState.ERROR),
    RuntimeState.ERROR: (RuntimeState.SHUTDOWN, RuntimeState.INITIALIZING),
    RuntimeState.SHUTDOWN: (RuntimeState.UNINITIALIZED,),
}


@dataclass(frozen=True)
class StateTransition:
    from_state: RuntimeState
    to_state: RuntimeState
    at: datetime = field(default_factory=lambda: datetime.now(UTC))
    forced: bool = False


TransitionListener = Callable[[RuntimeState, RuntimeState], Any]


class RuntimeStateMachine:
    """Current runtime state, its legal moves and a bounded history."""

    def __init__(self) -> None:
        self._state = RuntimeState.UNINITIALIZED
        self._history: deque[StateTransition] = deque(maxlen=MAX_HISTORY)
        self._listeners: list[TransitionListener] = []

    @property
    def state(self) -> RuntimeState:
        return self._state

    def get_state(self) -> RuntimeState:
        return self._state

    def can_transition_to(self, target: RuntimeState | str) -> bool:
        return RuntimeState(target) in VALID_TRANSITIONS[self._state]

    def get_valid_transitions(self) -> list[RuntimeState]:
        return list(VALID_TRANSITIONS[self._state])

    async def transition_to(self, target: RuntimeState | str) -> None:
        """Move to ``target`` and notify listeners in registration order.

        Listener errors are logged and do not revert the transition.

        Raises:
            InvalidTransitionError: ``target`` is not reachable from the
                current state.
        """
        target = RuntimeState(target)
        if not self.can_transition_to(target):
            raise InvalidTransitionError(
                self._state.value,
                target.value,
                [s.value for s in self.get_valid_transitions()],
            )

        previous = self._state
        logger.info("state_machine.transition", from_state=previous.value, to_state=target.value)
        self._history.append(StateTransition(previous, target))
        self._state = target

        for listener in list(self._listeners):
            try:
                result = listener(previous, target)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(
                    "state_machine.listener_failed",
                    from_state=previous.value,
                    to_state=target.value,
                    error=str(exc),
                )

    def force_state(self, target: RuntimeState | str) -> None:
        """Set the state without validation; listeners are not notified."""
        target = RuntimeState(target)
        logger.warning("state_machine.forced", from_state=self._state.value, to_state=target.value)
        self._history.append(StateTransition(self._state, target, forced=True))
        self._state = target

    def on_transition(self, listener: TransitionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get_history(self) -> list[StateTransition]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def is_in(self, state: RuntimeState | str) -> bool:
        return self._state == RuntimeState(state)

    def is_running(self) -> bool:
        return self._state == RuntimeState.RUNNING

    def is_ready(self) -> bool:
        return self._state in (RuntimeState.READY, RuntimeState.RUNNING)

    def is_error(self) -> bool:
        return self._state == RuntimeState.ERROR

    def reset(self) -> None:
        self._state = RuntimeState.UNINITIALIZED
        self._history.clear()
        self._listeners.clear()
        logger.info("state_machine.reset")


__all__ = [
    "MAX_HISTORY",
    "RuntimeState",
    "RuntimeStateMachine",
    "StateTransition",
    "TransitionListener",
    "VALID_TRANSITIONS",
]
