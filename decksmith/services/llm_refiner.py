"""
Generative refinement of rule-based recommendations.

The refiner receives the deck summary, detected gaps and rule suggestions,
and asks the model to pick and explain the most impactful suggestions and
name cuts. It cannot introduce new cards: suggestions it names must match a
rule suggestion, and cuts must match a card already in the deck. Anything
else in the output is dropped.

Every failure (timeout, API error, unparsable output) is raised as
ExternalServiceUnavailableError. The recommendation engine recovers by
serving rule-only output.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import anthropic
from anthropic.types import TextBlock

from decksmith.models.deck import DeckStats
from decksmith.models.failure import ExternalServiceUnavailableError
from decksmith.models.recommendation import CardSummary, DeckGap, LlmSuggestion, RuleSuggestion
from decksmith.services.cost_controls import DailyUsageTracker, enforce_cost_controls

logger = logging.getLogger(__name__)

SERVICE_NAME = "llm"

SYSTEM_PROMPT = """You are an expert Magic: The Gathering deck builder reviewing a deck.

You receive the deck's format, statistics, detected weaknesses and a list of
candidate cards chosen by a rule engine. Pick the candidates that would
improve the deck most, explain each pick in one or two sentences, and name
cards currently in the deck that could be cut to make room.

Only use card names that appear in the candidate list or the deck list.

Respond with a single JSON object and nothing else:
{
  "summary": "<two or three sentence overview>",
  "suggestions": [
    {"cardName": "<candidate name>", "reasoning": "<why>", "suggestedCuts": ["<deck card name>"]}
  ]
}"""


@dataclass
class RefinementContext:
    """Everything the refiner may see about a deck."""

    deck_name: str
    format: str
    stats: DeckStats
    gaps: list[DeckGap]
    suggestions: list[RuleSuggestion]
    deck_cards: list[CardSummary] = field(default_factory=list)


@dataclass
class RefinementResult:
    """Output of a successful refinement call."""

    model: str
    prompt_tokens: int
    completion_tokens: int
    cost_usd: float
    suggestions: list[LlmSuggestion]
    summary: str


class RecommendationRefiner(Protocol):
    async def refine(self, context: RefinementContext) -> RefinementResult: ...


def calculate_cost(
    prompt_tokens: int,
    completion_tokens: int,
    input_cost_per_mtok: float,
    output_cost_per_mtok: float,
) -> float:
    """Cost in USD from token counts and per-million-token rates."""
    cost = (
        prompt_tokens * input_cost_per_mtok + completion_tokens * output_cost_per_mtok
    ) / 1_000_000
    return round(cost, 6)


def build_prompt(context: RefinementContext) -> str:
    """Render the refinement request as the user message."""
    stats = context.stats
    lines = [
        f"Deck: {context.deck_name} ({context.format})",
        f"Cards: {stats.total_cards}, average mana value {stats.average_cmc:.2f}",
        f"Mana curve: {json.dumps(stats.mana_curve)}",
        f"Colors: {json.dumps(stats.color_distribution)}",
        f"Types: {json.dumps(stats.type_distribution)}",
        "",
        "Weaknesses:",
    ]
    lines.extend(f"- [{gap.severity.value}] {gap.category.value}: {gap.description}" for gap in context.gaps)
    lines.append("")
    lines.append("Candidates:")
    for suggestion in context.suggestions:
        gap = suggestion.addresses_gap.value if suggestion.addresses_gap else "general"
        owned = "owned" if suggestion.ownership.get("is_owned") else "not owned"
        lines.append(
            f"- {suggestion.card.name} ({suggestion.card.type_line}; {gap}; "
            f"{suggestion.priority.value}; {owned})"
        )
    lines.append("")
    lines.append("Deck list:")
    lines.extend(f"- {card.name}" for card in context.deck_cards)
    return "\n".join(lines)


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def parse_refinement(
    text: str,
    context: RefinementContext,
) -> tuple[str, list[LlmSuggestion]]:
    """
    Parse the model's JSON output against the context.

    Raises:
        ValueError: If the output is not the expected JSON shape
    """
    data = json.loads(_strip_code_fence(text))
    if not isinstance(data, dict):
        raise ValueError("Refinement output is not a JSON object")
    summary = data.get("summary")
    raw_suggestions = data.get("suggestions")
    if not isinstance(summary, str) or not isinstance(raw_suggestions, list):
        raise ValueError("Refinement output is missing summary or suggestions")

    by_name = {s.card.name.lower(): s for s in context.suggestions}
    deck_by_name = {card.name.lower(): card for card in context.deck_cards}
    refined: list[LlmSuggestion] = []
    seen: set[str] = set()

    for item in raw_suggestions:
        if not isinstance(item, dict):
            continue
        card_name = item.get("cardName")
        reasoning = item.get("reasoning", "")
        raw_cuts = item.get("suggestedCuts") or []
        if not isinstance(card_name, str):
            raise ValueError("Refinement suggestion has no cardName string")
        if not isinstance(reasoning, str):
            raise ValueError(f"reasoning for {card_name!r} is not a string")
        if not isinstance(raw_cuts, list):
            raise ValueError(f"suggestedCuts for {card_name!r} is not a list")

        name = card_name.lower()
        suggestion = by_name.get(name)
        if suggestion is None or name in seen:
            logger.debug("Dropping refinement for unknown card %r", card_name)
            continue
        seen.add(name)
        cuts = [
            deck_by_name[cut.lower()]
            for cut in raw_cuts
            if isinstance(cut, str) and cut.lower() in deck_by_name
        ]
        refined.append(
            LlmSuggestion(
                suggestion=suggestion,
                reasoning=reasoning,
                suggested_cuts=cuts,
            )
        )

    return summary, refined


class AnthropicRefiner:
    """RecommendationRefiner backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int,
        timeout_seconds: float,
        input_cost_per_mtok: float,
        output_cost_per_mtok: float,
        llm_enabled: bool = True,
        tracker: DailyUsageTracker | None = None,
        client: Any = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.input_cost_per_mtok = input_cost_per_mtok
        self.output_cost_per_mtok = output_cost_per_mtok
        self.llm_enabled = llm_enabled
        self.tracker = tracker
        # Single attempt
        self.client = client or anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=timeout_seconds,
            max_retries=0,
        )

    async def refine(self, context: RefinementContext) -> RefinementResult:
        """
        Refine rule suggestions with one bounded model call.

        Raises:
            LLMDisabledError: If refinement is disabled
            DailyBudgetExceededError: If the daily budget is exhausted
            ExternalServiceUnavailableError: On timeout, API error or bad output
        """
        enforce_cost_controls(self.llm_enabled, self.tracker)

        try:
            response = await asyncio.wait_for(
                self.client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    system=SYSTEM_PROMPT,
                    messages=[{"role": "user", "content": build_prompt(context)}],
                ),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as e:
            raise ExternalServiceUnavailableError(
                SERVICE_NAME, f"timed out after {self.timeout_seconds}s"
            ) from e
        except anthropic.APIError as e:
            raise ExternalServiceUnavailableError(SERVICE_NAME, type(e).__name__) from e

        prompt_tokens = response.usage.input_tokens if response.usage else 0
        completion_tokens = response.usage.output_tokens if response.usage else 0
        cost = calculate_cost(
            prompt_tokens,
            completion_tokens,
            self.input_cost_per_mtok,
            self.output_cost_per_mtok,
        )
        if self.tracker is not None:
            self.tracker.record_llm_call(prompt_tokens, completion_tokens, cost)

        text = "".join(block.text for block in response.content if isinstance(block, TextBlock))
        try:
            summary, suggestions = parse_refinement(text, context)
        except (ValueError, TypeError) as e:
            # json.JSONDecodeError is a ValueError
            raise ExternalServiceUnavailableError(SERVICE_NAME, f"unparsable output: {e}") from e

        logger.info(
            "LLM_REFINEMENT_COMPLETED",
            extra={
                "model": self.model,
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "cost_usd": cost,
                "refined_suggestions": len(suggestions),
            },
        )
        return RefinementResult(
            model=self.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost_usd=cost,
            suggestions=suggestions,
            summary=summary,
        )
