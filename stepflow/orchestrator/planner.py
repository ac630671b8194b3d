from dataclasses import dataclass

from stepflow.config import WorkflowSpec
from stepflow.orchestrator.checkpoint import RunState


@dataclass(frozen=True)
class ResumePlan:
    next_step: int
    remaining_steps: int
    total_steps: int

    def is_complete(self) -> bool:
        return self.remaining_steps == 0


class ResumePlanner:
    """Computes where a run continues from its checkpoint."""

    def __init__(self, workflow: WorkflowSpec) -> None:
        self.workflow = workflow

    def plan(self, state: RunState) -> ResumePlan:
        total = len(self.workflow.steps)
        # A pointer past the end means every step is done
        next_step = min(state.resume_pointer, total)
        return ResumePlan(
            next_step=next_step,
            remaining_steps=total - next_step,
            total_steps=total,
        )
