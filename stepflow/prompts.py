from pathlib import Path
from typing import Any, Mapping, Optional, Union

from stepflow.orchestrator.errors import PromptFileError

# Placeholder format for template variables
PLACEHOLDER_PREFIX = "{{"
PLACEHOLDER_SUFFIX = "}}"


def resolve_prompt_path(prompt_path: Union[str, Path], base_dir: Optional[Path] = None) -> Path:
    """Resolve a prompt path from a workflow document.

    Relative paths are taken relative to base_dir when given, else the
    current working directory.
    """
    path = Path(prompt_path)
    if path.is_absolute() or base_dir is None:
        return path
    return Path(base_dir) / path


def load_prompt(prompt_path: Union[str, Path], base_dir: Optional[Path] = None) -> str:
    """Load a prompt file.

    Raises:
        PromptFileError: If the prompt file does not exist or cannot be read
    """
    path = resolve_prompt_path(prompt_path, base_dir)

    if not path.is_file():
        raise PromptFileError(f"Prompt file not found: {path}")

    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise PromptFileError(f"Failed to read prompt file {path}: {e}") from e


def render_prompt(template: str, variables: Mapping[str, Any]) -> str:
    """Replace {{key}} and {{ key }} placeholders with values from variables.

    Args:
        template: Template string with {{key}} placeholders
        variables: Mapping of placeholder keys to values.
            Values are converted to strings if not already strings.

    Returns:
        Template with placeholders replaced. Missing keys leave placeholders unchanged.
    """
    result = template

    for key, value in variables.items():
        str_value = value if isinstance(value, str) else str(value)
        for placeholder in (
            PLACEHOLDER_PREFIX + key + PLACEHOLDER_SUFFIX,
            PLACEHOLDER_PREFIX + " " + key + " " + PLACEHOLDER_SUFFIX,
        ):
            result = result.replace(placeholder, str_value)

    return result
