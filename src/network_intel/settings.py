from __future__ import annotations

from pydantic import Field

try:
    from pydantic_settings import BaseSettings, SettingsConfigDict
except Exception as e:  # pragma: no cover
    raise RuntimeError(
        "pydantic-settings is required. Install with: pip install pydantic-settings"
    ) from e


DEFAULT_PORTFOLIO_STAGES = [
    "Portfolio MVF1",
    "Portfolio MVF2",
    "Motive AAV",
    "Balance Sheet/Former Funds",
    "Exited",
    "Portfolio",
]


class NetworkIntelSettings(BaseSettings):
    """Unified configuration for network-intel.

    Environment variables are prefixed with NETWORK_INTEL_.
    """

    model_config = SettingsConfigDict(env_prefix="NETWORK_INTEL_", extra="ignore")

    # --- Core ---
    log_level: str = Field(default="INFO", description="Python logging level")
    db_path: str = Field(default="~/.network_intel/graph.db")

    # --- Embeddings ---
    embedding_provider: str = Field(default="stub", description="stub|sentence-transformers|http")
    embedding_dim: int = 384
    st_model: str | None = Field(
        default=None,
        description="sentence-transformers model name (used when embedding_provider=sentence-transformers)",
    )
    embedding_model: str = "text-embedding-3-large"

    # --- Text generation (OpenAI-compatible) ---
    llm_base_url: str | None = None
    llm_api_key: str | None = None
    llm_model: str = "gpt-4o-mini"

    # --- Relationship data provider (CRM) ---
    crm_base_url: str | None = None
    crm_api_key: str | None = None
    crm_list_filter: str | None = Field(default=None, description="list id or filter passed to the CRM")
    crm_records_file: str | None = Field(default=None, description="JSON file of raw records (offline sync)")

    # --- Provider plumbing ---
    provider_timeout_s: float = 60.0
    provider_retry_attempts: int = 5

    # --- Pipeline ---
    batch_size: int = Field(default=10, description="items processed concurrently per chunk")
    batch_delay_s: float = Field(default=1.0, description="pause between chunks (rate limiting)")
    pipeline_timeout_s: float = 3600.0
    stale_run_after_s: float = Field(
        default=7200.0, description="a 'running' sync state older than this may be taken over"
    )
    portfolio_stages: list[str] = Field(default_factory=lambda: list(DEFAULT_PORTFOLIO_STAGES))
    delete_invalid_names: bool = Field(
        default=False, description="delete entities whose names fail validation during cleanup"
    )

    # --- Graph metrics ---
    analytics_backend: str = Field(default="networkx", description="none|networkx|neo4j-gds")

    # --- Retrieval / ranking ---
    retrieval_timeout_s: float = 5.0
    max_nodes_cap: int = 200
    default_max_nodes: int = 50
    similarity_floor: float = 0.3

    # --- Graph DB (Neo4j, optional) ---
    neo4j_uri: str | None = None
    neo4j_user: str | None = None
    neo4j_password: str | None = None
    neo4j_database: str = "neo4j"

    # --- HTTP ---
    bind_host: str = "0.0.0.0"
    bind_port: int = 8088


settings = NetworkIntelSettings()
