"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database (transcript store + usage log)
    database_url: str = "sqlite+aiosqlite:///./chats.db"
    database_auto_create: bool = True  # create_all on startup (dev / SQLite)

    # OpenAI
    openai_api_key: str = ""
    openai_base_url: str | None = None

    # LLM
    llm_model: str = "gpt-4o"
    llm_temperature: float = 0.4  # accuracy over creativity
    llm_max_tokens: int | None = None

    # --- Turn pipeline ---
    turn_timeout_seconds: float = 30.0  # wall-clock budget for the whole turn (search + generation)
    retrieval_timeout_seconds: float = 5.0  # fact-graph search share of the budget
    delivery_grace_seconds: float = 5.0  # wait for the last frame to flush before persisting
    recent_turn_window: int = 2  # messages replayed to the model
    fact_write_window: int = 4  # messages submitted to the fact graph
    memory_search_limit: int = 8
    preview_max_chars: int = 200

    # --- Fact graph (mem0 + Neo4j) ---
    fact_graph_backend: str = "mem0"  # mem0 | memory
    neo4j_url: str = ""
    neo4j_username: str = ""
    neo4j_password: str = ""
    mem0_embedding_model: str = "text-embedding-3-small"
    mem0_history_db_path: str = "./.mem0/history.db"

    # HTTP
    cors_origins: list[str] = []  # e.g. ["https://ward.example.org"]; "*" disables credentials

    # App
    debug: bool = False
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
