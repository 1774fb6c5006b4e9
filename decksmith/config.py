from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "Decksmith"
    debug: bool = False

    database_url: str = "postgresql+asyncpg://localhost:5432/decksmith"

    anthropic_api_key: str = ""

    # Generative refinement of recommendations
    llm_enabled: bool = True
    llm_model: str = "claude-sonnet-4-20250514"
    llm_max_tokens: int = 2048
    llm_timeout_seconds: float = 20.0
    llm_input_cost_per_mtok: float = 3.0
    llm_output_cost_per_mtok: float = 15.0
    llm_max_calls_per_day: int = 500
    llm_max_tokens_per_day: int = 500_000
    llm_max_cost_usd_per_day: float = 10.0

    # Recommendation cache policy
    recommendation_ttl_hours: int = 24
    max_suggestions_per_gap: int = 5


settings = Settings()


# =============================================================================
# FIELD LIMITS
# =============================================================================

MAX_NOTES_LENGTH = 1000
MAX_DECK_CARD_NOTES_LENGTH = 200
MAX_FEEDBACK_COMMENT_LENGTH = 1000

# Candidates fetched from the catalog per gap before ranking
CANDIDATE_FETCH_LIMIT = 25
