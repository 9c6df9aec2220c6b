"""Configuration management."""

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # API Keys
    voyage_api_key: SecretStr = SecretStr("")
    voyage_model: str = "voyage-3"
    logfire_token: str | None = None

    # Storage
    storage_backend: Literal["neo4j", "memory"] = "neo4j"
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: SecretStr = SecretStr("password")
    neo4j_pool_size: int = 50
    neo4j_connection_lifetime: int = 3600

    # App config
    debug: bool = False

    # Canonicalization
    dedup_threshold: float = Field(default=0.92, ge=0.0, le=1.0, description="Minimum cosine similarity to join a canonical cluster")  # noqa: E501
    similarity_epsilon: float = Field(default=1e-9, description="Scores this close to the best are treated as ties")
    canonical_candidate_limit: int = Field(default=500, ge=1, description="Representatives scanned per chunk")
    orphan_grace_seconds: int = Field(default=300, ge=0, description="Unlinked canonical chunks younger than this are left alone")  # noqa: E501

    # Recall
    recall_due_page_size: int = 10
    recall_implicit_page_size: int = 3
    recall_min_delay_days: int = 1
    recall_max_delay_days: int = 365
    review_max_retries: int = Field(default=2, ge=0)
    review_timeout_seconds: float = 1.0

    # Jobs
    job_max_attempts: int = Field(default=3, ge=1)
    job_retry_initial_delay: float = 0.5
    job_retry_max_delay: float = 10.0
    dispatch_workers: int = 4
    disable_maintenance_jobs: bool = False
    orphan_sweep_interval_minutes: int = 60
    nightly_merge_hour: int = 3
    nightly_merge_minute: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # Ignore extra fields in .env file
        env_nested_delimiter="__",
    )


settings = Settings()
