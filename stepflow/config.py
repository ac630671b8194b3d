"""Workflow definition loading for stepflow.

A workflow document declares agents (a prompt plus engine/model defaults),
one or more named workflows (ordered lists of steps that each reference an
agent), engine presets, and free-form variables for prompt interpolation.

Two document shapes are accepted and normalized into the same FlowConfig:

- multi-workflow: ``[workflows.<name>]`` tables sharing ``[agents.*]``
- single-workflow: one ``[workflow]`` table, named by its ``name`` key or
  ``"main"`` when absent

Documents are read as TOML, or as YAML when the file ends in ``.yaml`` or
``.yml``.
"""

import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

# Check Python version for tomllib support (Python 3.11+)
if sys.version_info < (3, 11):
    raise RuntimeError(
        "stepflow requires Python 3.11 or greater for tomllib support. "
        f"Current version: {sys.version_info.major}.{sys.version_info.minor}"
    )

import tomllib  # Python 3.11+ standard library

import yaml

DEFAULT_ENGINE = "codex"
DEFAULT_MODEL = "gpt-5"
DEFAULT_WORKFLOW_NAME = "main"

REASONING_EFFORTS = ("minimal", "low", "medium", "high")
REASONING_SUMMARIES = ("auto", "concise", "detailed", "none")

YAML_SUFFIXES = {".yaml", ".yml"}


class ConfigError(Exception):
    """Raised when a workflow document cannot be loaded or is invalid."""
    pass


@dataclass(frozen=True)
class DefaultsConfig:
    engine: Optional[str] = None
    mock: Optional[bool] = None


@dataclass(frozen=True)
class EngineDetail:
    """Launch preset for one engine: executable plus arguments placed before ours."""
    bin: Optional[str] = None
    args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EnginesConfig:
    codex: EngineDetail = field(default_factory=EngineDetail)


@dataclass(frozen=True)
class AgentSpec:
    prompt: str
    engine: Optional[str] = None
    model: Optional[str] = None
    profile: Optional[str] = None
    reasoning_effort: Optional[str] = None
    reasoning_summary: Optional[str] = None


@dataclass(frozen=True)
class StepSpec:
    agent: str
    description: Optional[str] = None
    engine: Optional[str] = None
    model: Optional[str] = None
    prompt: Optional[str] = None
    reasoning_effort: Optional[str] = None
    reasoning_summary: Optional[str] = None


@dataclass(frozen=True)
class WorkflowSpec:
    steps: Tuple[StepSpec, ...] = ()
    description: Optional[str] = None


@dataclass(frozen=True)
class ResolvedStep:
    """Effective execution parameters for one step.

    Derived from the agent and the step's overrides; never persisted.
    """
    engine: str
    model: str
    prompt_path: str
    profile: Optional[str] = None
    reasoning_effort: Optional[str] = None
    reasoning_summary: Optional[str] = None


def resolve_step(agent: AgentSpec, step: StepSpec) -> ResolvedStep:
    """Merge a step's overrides onto its agent.

    For each field the step wins over the agent, and the agent wins over the
    built-in default. Profiles are only configured on agents.
    """
    return ResolvedStep(
        engine=step.engine or agent.engine or DEFAULT_ENGINE,
        model=step.model or agent.model or DEFAULT_MODEL,
        prompt_path=step.prompt or agent.prompt,
        profile=agent.profile,
        reasoning_effort=step.reasoning_effort or agent.reasoning_effort,
        reasoning_summary=step.reasoning_summary or agent.reasoning_summary,
    )


@dataclass(frozen=True)
class FlowConfig:
    """Normalized, immutable workflow document."""
    name: Optional[str] = None
    version: Optional[str] = None
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    engines: EnginesConfig = field(default_factory=EnginesConfig)
    agents: Mapping[str, AgentSpec] = field(default_factory=dict)
    workflows: Mapping[str, WorkflowSpec] = field(default_factory=dict)
    vars: Mapping[str, str] = field(default_factory=dict)

    def workflow(self, name: str) -> WorkflowSpec:
        try:
            return self.workflows[name]
        except KeyError:
            raise ConfigError(f"workflow not found: {name}") from None

    def agent_for(self, step: StepSpec) -> AgentSpec:
        try:
            return self.agents[step.agent]
        except KeyError:
            raise ConfigError(f"agent not found: {step.agent}") from None

    def merge_vars(self, extra: Optional[Mapping[str, Any]]) -> "FlowConfig":
        """Return a copy with caller-supplied variables layered over the document's."""
        if not extra:
            return self
        merged = dict(self.vars)
        for key, value in extra.items():
            merged[key] = value if isinstance(value, str) else str(value)
        return replace(self, vars=merged)


@dataclass(frozen=True)
class WorkflowFile:
    """Single-workflow document shape: one ``[workflow]`` table."""
    workflow: WorkflowSpec
    workflow_name: Optional[str] = None
    name: Optional[str] = None
    version: Optional[str] = None
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    engines: EnginesConfig = field(default_factory=EnginesConfig)
    agents: Mapping[str, AgentSpec] = field(default_factory=dict)
    vars: Mapping[str, str] = field(default_factory=dict)

    def into_flow_config(self) -> FlowConfig:
        name = self.workflow_name or DEFAULT_WORKFLOW_NAME
        return FlowConfig(
            name=self.name,
            version=self.version,
            defaults=self.defaults,
            engines=self.engines,
            agents=self.agents,
            workflows={name: self.workflow},
            vars=self.vars,
        )


@dataclass(frozen=True)
class LoadedWorkflow:
    config: FlowConfig
    workflow_name: str
    defaults_mock: Optional[bool]


def _type_name(value: Any) -> str:
    return type(value).__name__


def _table(value: Any, where: str, source: Path) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(
            f"Invalid value for '{where}' in {source}: "
            f"expected table, got {_type_name(value)}"
        )
    return value


def _optional_str(data: Dict[str, Any], key: str, where: str, source: Path) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(
            f"Invalid value for '{where}.{key}' in {source}: "
            f"expected string, got {_type_name(value)}"
        )
    return value


def _required_str(data: Dict[str, Any], key: str, where: str, source: Path) -> str:
    value = _optional_str(data, key, where, source)
    if not value:
        raise ConfigError(f"Missing required '{where}.{key}' in {source}")
    return value


def _choice(data: Dict[str, Any], key: str, choices: Tuple[str, ...], where: str,
            source: Path) -> Optional[str]:
    value = _optional_str(data, key, where, source)
    if value is not None and value not in choices:
        allowed = ", ".join(f"'{c}'" for c in choices)
        raise ConfigError(
            f"Invalid value for '{where}.{key}' in {source}: "
            f"must be one of {allowed}, got '{value}'"
        )
    return value


def _parse_defaults(data: Any, source: Path) -> DefaultsConfig:
    table = _table(data, "defaults", source)
    mock = table.get("mock")
    if mock is not None and not isinstance(mock, bool):
        raise ConfigError(
            f"Invalid value for 'defaults.mock' in {source}: "
            f"expected boolean, got {_type_name(mock)}"
        )
    return DefaultsConfig(
        engine=_optional_str(table, "engine", "defaults", source),
        mock=mock,
    )


def _parse_engines(data: Any, source: Path) -> EnginesConfig:
    table = _table(data, "engines", source)
    codex = _table(table.get("codex"), "engines.codex", source)
    args = codex.get("args", [])
    if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
        raise ConfigError(
            f"Invalid value for 'engines.codex.args' in {source}: "
            f"expected list of strings"
        )
    return EnginesConfig(
        codex=EngineDetail(
            bin=_optional_str(codex, "bin", "engines.codex", source),
            args=tuple(args),
        )
    )


def _parse_agents(data: Any, source: Path) -> Dict[str, AgentSpec]:
    agents = {}
    for agent_id, raw in _table(data, "agents", source).items():
        where = f"agents.{agent_id}"
        table = _table(raw, where, source)
        agents[agent_id] = AgentSpec(
            prompt=_required_str(table, "prompt", where, source),
            engine=_optional_str(table, "engine", where, source),
            model=_optional_str(table, "model", where, source),
            profile=_optional_str(table, "profile", where, source),
            reasoning_effort=_choice(table, "reasoning_effort", REASONING_EFFORTS, where, source),
            reasoning_summary=_choice(table, "reasoning_summary", REASONING_SUMMARIES, where, source),
        )
    return agents


def _parse_step(raw: Any, where: str, source: Path) -> StepSpec:
    table = _table(raw, where, source)
    # "use" is accepted as an alias for "agent"
    if "agent" not in table and "use" in table:
        table = dict(table, agent=table["use"])
    return StepSpec(
        agent=_required_str(table, "agent", where, source),
        description=_optional_str(table, "description", where, source),
        engine=_optional_str(table, "engine", where, source),
        model=_optional_str(table, "model", where, source),
        prompt=_optional_str(table, "prompt", where, source),
        reasoning_effort=_choice(table, "reasoning_effort", REASONING_EFFORTS, where, source),
        reasoning_summary=_choice(table, "reasoning_summary", REASONING_SUMMARIES, where, source),
    )


def _parse_workflow(raw: Any, where: str, source: Path) -> WorkflowSpec:
    table = _table(raw, where, source)
    steps = table.get("steps", [])
    if not isinstance(steps, list):
        raise ConfigError(
            f"Invalid value for '{where}.steps' in {source}: "
            f"expected list, got {_type_name(steps)}"
        )
    return WorkflowSpec(
        steps=tuple(
            _parse_step(step, f"{where}.steps[{i}]", source)
            for i, step in enumerate(steps)
        ),
        description=_optional_str(table, "description", where, source),
    )


def _parse_vars(data: Any, source: Path) -> Dict[str, str]:
    table = _table(data, "vars", source)
    return {k: v if isinstance(v, str) else str(v) for k, v in table.items()}


def parse_document(data: Dict[str, Any], source: Path) -> FlowConfig:
    """Normalize a decoded workflow document into a FlowConfig.

    Unknown top-level keys are ignored so newer documents still load.

    Raises:
        ConfigError: If a section has the wrong type or a required key is missing
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid workflow document {source}: expected a table at top level")

    common = dict(
        name=_optional_str(data, "name", "document", source),
        version=None if data.get("version") is None else str(data["version"]),
        defaults=_parse_defaults(data.get("defaults"), source),
        engines=_parse_engines(data.get("engines"), source),
        agents=_parse_agents(data.get("agents"), source),
        vars=_parse_vars(data.get("vars"), source),
    )

    if "workflow" in data and "workflows" not in data:
        table = _table(data["workflow"], "workflow", source)
        single = WorkflowFile(
            workflow=_parse_workflow(table, "workflow", source),
            workflow_name=_optional_str(table, "name", "workflow", source),
            **common,
        )
        return single.into_flow_config()

    workflows = {
        name: _parse_workflow(raw, f"workflows.{name}", source)
        for name, raw in _table(data.get("workflows"), "workflows", source).items()
    }
    return FlowConfig(workflows=workflows, **common)


def _read_document(path: Path) -> Dict[str, Any]:
    try:
        if path.suffix.lower() in YAML_SUFFIXES:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
            return {} if data is None else data
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(
            f"Failed to parse {path}: Invalid TOML syntax - {e}"
        ) from e
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse {path}: Invalid YAML syntax - {e}"
        ) from e
    except OSError as e:
        raise ConfigError(
            f"Failed to read {path}: {e}"
        ) from e


def load_workflow(path: Path, workflow_name: Optional[str] = None) -> LoadedWorkflow:
    """Load a workflow document and select one workflow from it.

    Args:
        path: Path to a TOML or YAML workflow document
        workflow_name: Workflow to select. If None, the first declared
            workflow is used (``"main"`` when none are declared).

    Returns:
        LoadedWorkflow with the normalized config, the selected workflow name
        and the document's ``defaults.mock`` value

    Raises:
        ConfigError: If the document cannot be read or parsed, or the
            selected workflow does not exist
    """
    path = Path(path)
    config = parse_document(_read_document(path), path)

    if workflow_name is None:
        workflow_name = next(iter(config.workflows), DEFAULT_WORKFLOW_NAME)
    # Fail before execution if the workflow is missing
    config.workflow(workflow_name)

    return LoadedWorkflow(
        config=config,
        workflow_name=workflow_name,
        defaults_mock=config.defaults.mock,
    )
