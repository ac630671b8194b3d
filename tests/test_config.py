"""Tests for workflow document loading and step resolution."""

import pytest

from stepflow.config import (
    DEFAULT_WORKFLOW_NAME,
    AgentSpec,
    ConfigError,
    FlowConfig,
    ResolvedStep,
    StepSpec,
    WorkflowSpec,
    load_workflow,
    resolve_step,
)


MULTI_TOML = """
name = "pipeline"
version = "1"

[defaults]
mock = true

[engines.codex]
bin = "/opt/codex"
args = ["--sandbox", "read-only"]

[agents.plan]
prompt = "prompts/plan.md"
model = "o3"
reasoning_effort = "high"

[agents.review]
prompt = "prompts/review.md"
profile = "careful"

[workflows.ship]
description = "Plan then review"
steps = [
  { agent = "plan" },
  { use = "review", model = "gpt-4.1", reasoning_summary = "concise" },
]

[workflows.hotfix]
steps = [{ agent = "review" }]

[vars]
project = "demo"
retries = 3
"""

SINGLE_TOML = """
[agents.plan]
prompt = "plan.md"

[workflow]
steps = [{ agent = "plan" }]
"""


class TestResolveStep:
    """Merge precedence: step override, then agent, then built-in default."""

    def test_builtin_defaults(self):
        resolved = resolve_step(AgentSpec(prompt="a.md"), StepSpec(agent="a"))
        assert resolved == ResolvedStep(engine="codex", model="gpt-5", prompt_path="a.md")

    def test_agent_values_used_when_step_silent(self):
        agent = AgentSpec(prompt="a.md", model="o3", profile="p", reasoning_effort="low",
                          reasoning_summary="auto")
        resolved = resolve_step(agent, StepSpec(agent="a"))
        assert resolved.model == "o3"
        assert resolved.profile == "p"
        assert resolved.reasoning_effort == "low"
        assert resolved.reasoning_summary == "auto"

    def test_step_overrides_agent(self):
        agent = AgentSpec(prompt="a.md", model="o3", reasoning_effort="low")
        step = StepSpec(agent="a", model="gpt-4o", prompt="b.md", reasoning_effort="high",
                        engine="codex")
        resolved = resolve_step(agent, step)
        assert resolved.model == "gpt-4o"
        assert resolved.prompt_path == "b.md"
        assert resolved.reasoning_effort == "high"

    def test_agent_engine_used(self):
        resolved = resolve_step(AgentSpec(prompt="a.md", engine="other"), StepSpec(agent="a"))
        assert resolved.engine == "other"


class TestFlowConfigLookups:
    def test_missing_workflow(self):
        with pytest.raises(ConfigError, match="workflow not found: nope"):
            FlowConfig().workflow("nope")

    def test_missing_agent(self):
        with pytest.raises(ConfigError, match="agent not found: ghost"):
            FlowConfig().agent_for(StepSpec(agent="ghost"))

    def test_merge_vars_overlays_and_stringifies(self):
        config = FlowConfig(vars={"a": "1", "b": "2"})
        merged = config.merge_vars({"b": "override", "c": 3})
        assert merged.vars == {"a": "1", "b": "override", "c": "3"}
        # Original untouched
        assert config.vars == {"a": "1", "b": "2"}

    def test_merge_vars_empty_returns_same(self):
        config = FlowConfig(vars={"a": "1"})
        assert config.merge_vars(None) is config


class TestLoadWorkflow:
    """Tests for load_workflow() on TOML and YAML documents."""

    def test_multi_workflow_document(self, tmp_path):
        path = tmp_path / "flow.toml"
        path.write_text(MULTI_TOML)

        loaded = load_workflow(path, "ship")
        config = loaded.config

        assert loaded.workflow_name == "ship"
        assert loaded.defaults_mock is True
        assert config.name == "pipeline"
        assert config.engines.codex.bin == "/opt/codex"
        assert config.engines.codex.args == ("--sandbox", "read-only")
        assert config.vars == {"project": "demo", "retries": "3"}

        steps = config.workflow("ship").steps
        assert [s.agent for s in steps] == ["plan", "review"]
        assert steps[1].model == "gpt-4.1"
        assert steps[1].reasoning_summary == "concise"
        assert config.workflow("ship").description == "Plan then review"

    def test_first_workflow_selected_by_default(self, tmp_path):
        path = tmp_path / "flow.toml"
        path.write_text(MULTI_TOML)
        assert load_workflow(path).workflow_name == "ship"

    def test_unknown_workflow_fails_before_execution(self, tmp_path):
        path = tmp_path / "flow.toml"
        path.write_text(MULTI_TOML)
        with pytest.raises(ConfigError, match="workflow not found: missing"):
            load_workflow(path, "missing")

    def test_single_workflow_document_named_main(self, tmp_path):
        path = tmp_path / "flow.toml"
        path.write_text(SINGLE_TOML)

        loaded = load_workflow(path)

        assert loaded.workflow_name == DEFAULT_WORKFLOW_NAME
        assert loaded.defaults_mock is None
        assert len(loaded.config.workflow("main").steps) == 1

    def test_single_workflow_with_explicit_name(self, tmp_path):
        path = tmp_path / "flow.toml"
        path.write_text(SINGLE_TOML.replace("[workflow]\n", '[workflow]\nname = "nightly"\n'))
        loaded = load_workflow(path)
        assert loaded.workflow_name == "nightly"

    def test_yaml_document(self, tmp_path):
        path = tmp_path / "flow.yaml"
        path.write_text(
            "agents:\n"
            "  plan:\n"
            "    prompt: plan.md\n"
            "    model: gpt-4o\n"
            "workflows:\n"
            "  main:\n"
            "    steps:\n"
            "      - agent: plan\n"
            "      - use: plan\n"
            "        description: second pass\n"
        )

        config = load_workflow(path).config

        steps = config.workflow("main").steps
        assert len(steps) == 2
        assert steps[1].description == "second pass"
        assert config.agents["plan"].model == "gpt-4o"

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "flow.toml"
        path.write_text("[agents\n")
        with pytest.raises(ConfigError, match="Invalid TOML syntax"):
            load_workflow(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "flow.yml"
        path.write_text("agents: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML syntax"):
            load_workflow(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Failed to read"):
            load_workflow(tmp_path / "absent.toml")

    def test_agent_without_prompt(self, tmp_path):
        path = tmp_path / "flow.toml"
        path.write_text('[agents.plan]\nmodel = "o3"\n[workflow]\nsteps = [{ agent = "plan" }]\n')
        with pytest.raises(ConfigError, match="agents.plan.prompt"):
            load_workflow(path)

    def test_step_without_agent(self, tmp_path):
        path = tmp_path / "flow.toml"
        path.write_text('[workflow]\nsteps = [{ description = "orphan" }]\n')
        with pytest.raises(ConfigError, match="agent"):
            load_workflow(path)

    def test_invalid_reasoning_effort(self, tmp_path):
        path = tmp_path / "flow.toml"
        path.write_text('[agents.plan]\nprompt = "p.md"\nreasoning_effort = "extreme"\n')
        with pytest.raises(ConfigError, match="must be one of"):
            load_workflow(path)

    def test_wrong_type_for_mock_default(self, tmp_path):
        path = tmp_path / "flow.toml"
        path.write_text('[defaults]\nmock = "yes"\n')
        with pytest.raises(ConfigError, match="expected boolean"):
            load_workflow(path)

    def test_unknown_keys_ignored(self, tmp_path):
        path = tmp_path / "flow.toml"
        path.write_text(SINGLE_TOML + '\n[telemetry]\nenabled = true\n')
        assert load_workflow(path).workflow_name == "main"

    def test_workflow_spec_is_immutable(self):
        spec = WorkflowSpec(steps=(StepSpec(agent="a"),))
        with pytest.raises(AttributeError):
            spec.description = "changed"
