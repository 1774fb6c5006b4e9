"""
Refinement spend controls.

Every generative refinement call is metered here. Before a call the refiner
asks `enforce_cost_controls` whether it may spend; after a call that reached
the provider it reports the tokens and dollars it used. Three daily caps
apply (calls, tokens, USD) plus the LLM_ENABLED kill switch.

A refusal is a KnownError. The recommendation engine catches it and stores
a rule-only recommendation, so a spent budget never fails a request.

Counters are process-local and roll over at midnight UTC.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from threading import Lock

from decksmith.config import settings
from decksmith.models.failure import FailureKind, KnownError

logger = logging.getLogger(__name__)

DEFAULT_MAX_LLM_CALLS_PER_DAY = 500
DEFAULT_MAX_TOKENS_PER_DAY = 500_000
DEFAULT_MAX_COST_USD_PER_DAY = 10.0


class DailyBudgetExceededError(KnownError):
    """One of today's refinement caps is used up."""

    def __init__(self, limit_type: str, used: int | float, limit: int | float):
        self.limit_type = limit_type
        self.used = used
        self.limit = limit
        super().__init__(
            kind=FailureKind.BUDGET_EXCEEDED,
            message="The daily budget for recommendation refinement is exhausted.",
            detail=f"Daily {limit_type}: {used}/{limit}",
            suggestion=(
                "Rule-based suggestions are still served. The budget resets at midnight UTC."
            ),
            status_code=503,
        )


class LLMDisabledError(KnownError):
    """Refinement is switched off for this deployment."""

    def __init__(self) -> None:
        super().__init__(
            kind=FailureKind.SERVICE_UNAVAILABLE,
            message="LLM functionality is currently disabled.",
            detail="LLM_ENABLED=false",
            status_code=503,
        )


@dataclass
class DailyUsageTracker:
    """
    Today's refinement spend, shared by every refiner in the process.

    Safe to call from several threads; all counters sit behind one lock.
    """

    max_llm_calls_per_day: int = DEFAULT_MAX_LLM_CALLS_PER_DAY
    max_tokens_per_day: int = DEFAULT_MAX_TOKENS_PER_DAY
    max_cost_usd_per_day: float = DEFAULT_MAX_COST_USD_PER_DAY

    _current_date: date = field(default_factory=lambda: datetime.now(UTC).date())
    _llm_calls_today: int = 0
    _tokens_today: int = 0
    _cost_today_usd: float = 0.0
    _lock: Lock = field(default_factory=Lock)

    def _roll_over(self) -> None:
        today = datetime.now(UTC).date()
        if today == self._current_date:
            return
        logger.info(
            "DAILY_COUNTERS_RESET",
            extra={
                "previous_date": self._current_date.isoformat(),
                "llm_calls": self._llm_calls_today,
                "cost_usd": round(self._cost_today_usd, 6),
            },
        )
        self._current_date = today
        self._llm_calls_today = 0
        self._tokens_today = 0
        self._cost_today_usd = 0.0

    def _spend(self) -> list[tuple[str, int | float, int | float]]:
        return [
            ("LLM calls", self._llm_calls_today, self.max_llm_calls_per_day),
            ("tokens", self._tokens_today, self.max_tokens_per_day),
            ("cost USD", round(self._cost_today_usd, 6), self.max_cost_usd_per_day),
        ]

    def check_daily_budget(self) -> None:
        """
        Refuse the next refinement if any cap is reached.

        Caps are checked in order: calls, tokens, then dollars.

        Raises:
            DailyBudgetExceededError: Naming the first cap that is used up
        """
        with self._lock:
            self._roll_over()
            for limit_type, used, limit in self._spend():
                if used >= limit:
                    logger.warning(
                        "DAILY_REFINEMENT_BUDGET_EXCEEDED",
                        extra={"limit_type": limit_type, "used": used, "limit": limit},
                    )
                    raise DailyBudgetExceededError(limit_type, used, limit)

    def record_llm_call(self, input_tokens: int, output_tokens: int, cost_usd: float = 0.0) -> None:
        """
        Add one provider call to today's spend.

        Billed calls count even when their output was unusable.
        """
        with self._lock:
            self._roll_over()
            self._llm_calls_today += 1
            self._tokens_today += input_tokens + output_tokens
            self._cost_today_usd += cost_usd
            logger.debug(
                "LLM_CALL_RECORDED",
                extra={
                    "llm_calls_today": self._llm_calls_today,
                    "tokens_today": self._tokens_today,
                    "cost_today_usd": round(self._cost_today_usd, 6),
                },
            )

    def get_diagnostics(self) -> dict[str, int | float | str]:
        """Spend so far today and what is left under each cap."""
        with self._lock:
            self._roll_over()
            cost = round(self._cost_today_usd, 6)
            return {
                "date": self._current_date.isoformat(),
                "llm_calls_today": self._llm_calls_today,
                "llm_calls_remaining": max(0, self.max_llm_calls_per_day - self._llm_calls_today),
                "llm_calls_limit": self.max_llm_calls_per_day,
                "tokens_today": self._tokens_today,
                "tokens_remaining": max(0, self.max_tokens_per_day - self._tokens_today),
                "tokens_limit": self.max_tokens_per_day,
                "cost_today_usd": cost,
                "cost_remaining_usd": round(max(0.0, self.max_cost_usd_per_day - cost), 6),
                "cost_limit_usd": self.max_cost_usd_per_day,
            }


_usage_tracker: DailyUsageTracker | None = None


def get_usage_tracker() -> DailyUsageTracker:
    """The process-wide tracker, built from settings on first use."""
    global _usage_tracker
    if _usage_tracker is None:
        _usage_tracker = DailyUsageTracker(
            max_llm_calls_per_day=settings.llm_max_calls_per_day,
            max_tokens_per_day=settings.llm_max_tokens_per_day,
            max_cost_usd_per_day=settings.llm_max_cost_usd_per_day,
        )
    return _usage_tracker


def reset_usage_tracker() -> None:
    """Drop the process-wide tracker so the next lookup starts from zero."""
    global _usage_tracker
    _usage_tracker = None


def check_llm_enabled(llm_enabled: bool) -> None:
    """
    Raises:
        LLMDisabledError: If refinement is disabled
    """
    if not llm_enabled:
        logger.warning("LLM_DISABLED", extra={"llm_enabled": False})
        raise LLMDisabledError()


def enforce_cost_controls(llm_enabled: bool, tracker: DailyUsageTracker | None = None) -> None:
    """
    Gate one refinement call.

    The kill switch is checked before the budget, so a disabled deployment
    reports LLMDisabledError even when its budget is also spent.

    Raises:
        LLMDisabledError: If refinement is disabled
        DailyBudgetExceededError: If a daily cap is reached
    """
    check_llm_enabled(llm_enabled)
    (tracker or get_usage_tracker()).check_daily_budget()
