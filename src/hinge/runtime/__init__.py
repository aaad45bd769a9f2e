"""Runtime: state machine, scheduler and the engine facade.

Modules
-------
state_machine   RuntimeStateMachine and its transition table
scheduler       interval / cron-preset task scheduler
engine          RuntimeEngine -- wires every component together
"""

from hinge.runtime.engine import RuntimeEngine, RuntimeStats
from hinge.runtime.scheduler import ScheduledTask, Scheduler, SchedulerStats, parse_cron
from hinge.runtime.state_machine import RuntimeState, RuntimeStateMachine, StateTransition

__all__ = [
    "RuntimeEngine",
    "RuntimeStats",
    "RuntimeState",
    "RuntimeStateMachine",
    "ScheduledTask",
    "Scheduler",
    "SchedulerStats",
    "StateTransition",
    "parse_cron",
]
