"""Per-step token usage and cost accounting.

Engines report the usage block of every ``turn.completed`` event to a
UsageRecorder. The orchestrator hands each step a fresh StepHandle from the
run's TokenLedger; when the step ends, finish() commits the step's usage to
the ledger and returns it as the step's ``token_delta``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

from stepflow.orchestrator.checkpoint import TokenUsage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelPricing:
    """USD per token."""
    prompt: float
    completion: float


# Matched in order against the lowercased model name
PRICING_TABLE: Tuple[Tuple[Tuple[str, ...], ModelPricing], ...] = (
    (("gpt-4o",), ModelPricing(prompt=5.0e-6, completion=15.0e-6)),
    (("o4-mini",), ModelPricing(prompt=2.5e-6, completion=10.0e-6)),
    (("o3",), ModelPricing(prompt=15.0e-6, completion=60.0e-6)),
    (("gpt-4.1",), ModelPricing(prompt=30.0e-6, completion=60.0e-6)),
    (("gpt-5", "codex-"), ModelPricing(prompt=30.0e-6, completion=60.0e-6)),
    (("gpt-3.5",), ModelPricing(prompt=0.5e-6, completion=1.5e-6)),
)

FREE = ModelPricing(prompt=0.0, completion=0.0)


def pricing_for_model(model: str) -> ModelPricing:
    """Look up per-token prices by model-name prefix; unknown models cost nothing."""
    name = model.lower()
    for prefixes, pricing in PRICING_TABLE:
        if name.startswith(prefixes):
            return pricing
    return FREE


def usage_from_turn(usage: Dict[str, Any], pricing: ModelPricing) -> TokenUsage:
    """Convert a ``turn.completed`` usage block into a priced TokenUsage.

    Cached input tokens are billed as prompt tokens.
    """
    prompt_tokens = int(usage.get("input_tokens") or 0) + int(usage.get("cached_input_tokens") or 0)
    completion_tokens = int(usage.get("output_tokens") or 0)
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        total_cost=prompt_tokens * pricing.prompt + completion_tokens * pricing.completion,
    )


class UsageRecorder(Protocol):
    def record_turn_usage(self, usage: Dict[str, Any]) -> None:
        ...


class StepHandle:
    """Accumulates usage for one step until finish() commits it."""

    def __init__(self, ledger: "TokenLedger", model: str) -> None:
        self._ledger = ledger
        self.model = model
        self._pricing = pricing_for_model(model)
        self._usage: Optional[TokenUsage] = None
        self._finished = False

    def record_turn_usage(self, usage: Dict[str, Any]) -> None:
        delta = usage_from_turn(usage, self._pricing)
        if self._usage is None:
            self._usage = TokenUsage()
        self._usage.add_assign(delta)

    def finish(self) -> Optional[TokenUsage]:
        """Commit this step's usage to the ledger.

        Returns:
            The step's usage, or None if no turn reported usage.
            Calling finish() again returns the same value without
            committing twice.
        """
        if not self._finished:
            self._finished = True
            if self._usage is not None:
                self._ledger._commit(self.model, self._usage)
        return self._usage.copy() if self._usage is not None else None


class TokenLedger:
    """Run-level usage accumulator."""

    def __init__(self) -> None:
        self._total: Optional[TokenUsage] = None
        self._entries: List[Tuple[str, TokenUsage]] = []

    def step(self, model: str) -> StepHandle:
        return StepHandle(self, model)

    def _commit(self, model: str, usage: TokenUsage) -> None:
        if self._total is None:
            self._total = TokenUsage()
        self._total.add_assign(usage)
        self._entries.append((model, usage.copy()))
        logger.debug(
            f"Step usage for {model}: {usage.total_tokens} tokens, ${usage.total_cost:.4f}"
        )

    def total_usage(self) -> Optional[TokenUsage]:
        return self._total.copy() if self._total is not None else None

    def entries(self) -> List[Tuple[str, TokenUsage]]:
        return list(self._entries)
