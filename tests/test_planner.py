"""Tests for the resume planner."""

import pytest

from stepflow.config import StepSpec, WorkflowSpec
from stepflow.orchestrator.checkpoint import RunState
from stepflow.orchestrator.planner import ResumePlan, ResumePlanner


def _workflow(n: int) -> WorkflowSpec:
    return WorkflowSpec(steps=tuple(StepSpec(agent=f"a{i}") for i in range(n)))


class TestResumePlanner:
    @pytest.mark.parametrize("pointer,expected", [
        (0, ResumePlan(next_step=0, remaining_steps=4, total_steps=4)),
        (2, ResumePlan(next_step=2, remaining_steps=2, total_steps=4)),
        (4, ResumePlan(next_step=4, remaining_steps=0, total_steps=4)),
        (9, ResumePlan(next_step=4, remaining_steps=0, total_steps=4)),
    ])
    def test_plan(self, pointer, expected):
        plan = ResumePlanner(_workflow(4)).plan(RunState(resume_pointer=pointer))
        assert plan == expected

    def test_is_complete(self):
        planner = ResumePlanner(_workflow(2))
        assert planner.plan(RunState(resume_pointer=2)).is_complete()
        assert not planner.plan(RunState(resume_pointer=1)).is_complete()

    def test_empty_workflow_is_complete(self):
        assert ResumePlanner(_workflow(0)).plan(RunState()).is_complete()
