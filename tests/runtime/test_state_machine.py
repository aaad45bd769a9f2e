"""
Tests for hinge.runtime.state_machine.
"""

import pytest

from hinge.core.errors import InvalidTransitionError
from hinge.runtime.state_machine import MAX_HISTORY, VALID_TRANSITIONS, RuntimeState, RuntimeStateMachine

S = RuntimeState


async def boot(machine):
    for target in (S.INITIALIZING, S.LOADING_PLUGINS, S.READY):
        await machine.transition_to(target)


class TestRuntimeStateMachine:
    """Test the runtime state machine."""

    def test_initial_state(self):
        """A new machine is uninitialized with empty history."""
        machine = RuntimeStateMachine()
        assert machine.state == S.UNINITIALIZED
        assert machine.get_history() == []
        assert machine.get_valid_transitions() == [S.INITIALIZING]

    @pytest.mark.parametrize(
        "source, target, allowed",
        [
            (S.UNINITIALIZED, S.INITIALIZING, True),
            (S.UNINITIALIZED, S.READY, False),
            (S.INITIALIZING, S.ERROR, True),
            (S.LOADING_PLUGINS, S.RUNNING, False),
            (S.READY, S.RUNNING, True),
            (S.RUNNING, S.READY, True),
            (S.RUNNING, S.INITIALIZING, False),
            (S.ERROR, S.INITIALIZING, True),
            (S.ERROR, S.READY, False),
            (S.SHUTDOWN, S.UNINITIALIZED, True),
            (S.SHUTDOWN, S.RUNNING, False),
        ],
    )
    def test_transition_table(self, source, target, allowed):
        """can_transition_to follows the transition table."""
        machine = RuntimeStateMachine()
        machine.force_state(source)
        assert machine.can_transition_to(target) is allowed
        assert (target in VALID_TRANSITIONS[source]) is allowed

    @pytest.mark.asyncio
    async def test_full_lifecycle(self):
        """The normal boot, run and shutdown path is legal."""
        machine = RuntimeStateMachine()
        await boot(machine)
        await machine.transition_to(S.RUNNING)
        assert machine.is_running() and machine.is_ready()
        await machine.transition_to(S.SHUTDOWN)
        await machine.transition_to(S.UNINITIALIZED)

        history = machine.get_history()
        assert [t.to_state for t in history] == [
            S.INITIALIZING,
            S.LOADING_PLUGINS,
            S.READY,
            S.RUNNING,
            S.SHUTDOWN,
            S.UNINITIALIZED,
        ]
        assert history[0].from_state == S.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_invalid_transition_leaves_state(self):
        """An illegal move raises and changes nothing."""
        machine = RuntimeStateMachine()
        await machine.transition_to("initializing")
        await machine.transition_to("loading_plugins")
        await machine.transition_to("ready")
        await machine.transition_to("running")

        with pytest.raises(InvalidTransitionError) as exc_info:
            await machine.transition_to(S.INITIALIZING)
        assert machine.state == S.RUNNING
        assert len(machine.get_history()) == 4
        assert "ready" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_listeners(self):
        """Listeners get (previous, target); failures do not revert."""
        seen = []

        def broken(previous, target):
            raise RuntimeError("listener bug")

        async def record(previous, target):
            seen.append((previous, target))

        machine = RuntimeStateMachine()
        machine.on_transition(broken)
        unsubscribe = machine.on_transition(record)
        await machine.transition_to(S.INITIALIZING)
        unsubscribe()
        await machine.transition_to(S.ERROR)

        assert seen == [(S.UNINITIALIZED, S.INITIALIZING)]
        assert machine.is_error()

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        """History keeps only the most recent transitions."""
        machine = RuntimeStateMachine()
        await boot(machine)
        for i in range(500):
            await machine.transition_to(S.RUNNING if i % 2 == 0 else S.READY)

        history = machine.get_history()
        assert len(history) == MAX_HISTORY == 100
        assert history[-1].to_state == S.READY

    def test_force_and_reset(self):
        """force_state skips validation and is recorded; reset clears."""
        machine = RuntimeStateMachine()
        machine.force_state(S.RUNNING)
        assert machine.is_in("running")
        assert machine.get_history()[0].forced
        machine.clear_history()
        assert machine.get_history() == []
        assert machine.state == S.RUNNING

        machine.reset()
        assert machine.state == S.UNINITIALIZED
        assert machine.get_history() == []
