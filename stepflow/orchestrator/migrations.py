"""Checkpoint schema migration.

Checkpoints carry a ``schema_version``. Documents written before the field
existed are version 1. Older documents are upgraded one version at a time
until they reach WORKFLOW_STATE_SCHEMA_VERSION; the caller persists the
upgraded form.

Version history:
    1: per-step ``token_delta`` only
    2: adds the root ``token_usage`` aggregate
"""

import json
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from stepflow.orchestrator.errors import SchemaVersionError, StateFileError

logger = logging.getLogger(__name__)

WORKFLOW_STATE_SCHEMA_VERSION = 2

USAGE_FIELDS = ("prompt_tokens", "completion_tokens", "total_tokens", "total_cost")


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_usage(value: Any) -> Optional[Dict[str, Any]]:
    """Return a usage record with well-typed fields, or None to ignore the entry."""
    if not isinstance(value, dict):
        return None
    if not all(_is_count(value.get(key)) for key in USAGE_FIELDS[:3]):
        return None
    cost = value.get("total_cost")
    if isinstance(cost, bool) or not isinstance(cost, (int, float)):
        return None
    return {key: value[key] for key in USAGE_FIELDS}


def _migrate_v1_to_v2(doc: Dict[str, Any]) -> None:
    total: Optional[Dict[str, Any]] = None
    for step in doc.get("steps") or []:
        if not isinstance(step, dict):
            continue
        delta = _parse_usage(step.get("token_delta"))
        if delta is None:
            continue
        if total is None:
            total = {key: 0 for key in USAGE_FIELDS}
            total["total_cost"] = 0.0
        for key in USAGE_FIELDS:
            total[key] += delta[key]

    doc["token_usage"] = total
    doc["schema_version"] = 2


MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], None]] = {
    1: _migrate_v1_to_v2,
}


def upgrade(raw: str) -> Tuple[Dict[str, Any], bool]:
    """Parse a checkpoint document and bring it to the current schema.

    Args:
        raw: File contents

    Returns:
        Tuple of (document at the current schema version, whether any
        migration was applied)

    Raises:
        StateFileError: If the contents are not a JSON object
        StateFileError: If there is no migration path from the document's version
        SchemaVersionError: If the version is newer than supported
    """
    try:
        doc = json.loads(raw)
    except (ValueError, RecursionError) as e:
        raise StateFileError(f"Malformed checkpoint: {e}") from e

    if not isinstance(doc, dict):
        raise StateFileError("Malformed checkpoint: expected a JSON object")

    version = doc.get("schema_version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise StateFileError(f"Malformed checkpoint: invalid schema_version {version!r}")

    if version > WORKFLOW_STATE_SCHEMA_VERSION:
        raise SchemaVersionError(
            f"workflow state schema version {version} is newer than supported "
            f"version {WORKFLOW_STATE_SCHEMA_VERSION}"
        )

    migrated = False
    while version < WORKFLOW_STATE_SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise StateFileError(
                f"no migration path for workflow state schema version {version}"
            )
        try:
            step(doc)
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            raise StateFileError(
                f"failed to migrate workflow state from schema version {version}: {e}"
            ) from e
        logger.debug(f"Migrated checkpoint from schema version {version} to {version + 1}")
        version += 1
        migrated = True

    doc["schema_version"] = version
    return doc, migrated
