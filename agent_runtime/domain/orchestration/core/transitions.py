from typing import Any, Dict, FrozenSet

from agent_runtime.domain.models.workflow_state import WorkflowStep

# Every step may also jump straight to COMPLETE
TRANSITIONS: Dict[WorkflowStep, FrozenSet[WorkflowStep]] = {
    WorkflowStep.OBSERVE: frozenset({WorkflowStep.REASON, WorkflowStep.COMPLETE}),
    WorkflowStep.REASON: frozenset({WorkflowStep.ACT, WorkflowStep.COMPLETE}),
    WorkflowStep.ACT: frozenset({WorkflowStep.LOOP_CHECK, WorkflowStep.COMPLETE}),
    WorkflowStep.LOOP_CHECK: frozenset({WorkflowStep.OBSERVE, WorkflowStep.COMPLETE}),
    WorkflowStep.COMPLETE: frozenset(),
}


class InvalidTransitionError(ValueError):
    pass


def parse_step(value: Any) -> WorkflowStep:
    if isinstance(value, WorkflowStep):
        return value
    try:
        return WorkflowStep(value)
    except ValueError:
        raise InvalidTransitionError(f"Unknown step: {value!r}")


def check_transition(current: WorkflowStep, value: Any) -> WorkflowStep:
    """Return the next step, or raise if the table does not allow it"""

    next_step = parse_step(value)
    if next_step not in TRANSITIONS[current]:
        raise InvalidTransitionError(f"Invalid transition: {current.value} -> {next_step.value}")
    return next_step
