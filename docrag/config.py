"""
docrag configuration
---------------------
Settings are read from a YAML file (config/config.yaml by default), then
overridden by environment variables (a .env file is honoured via
python-dotenv).  Every section is a pydantic model so bad values fail fast
with a ValidationError instead of surfacing deep inside the pipeline.

Environment overrides:
  OPENAI_API_KEY                    -> embedding.api_key
  OPENAI_BASE_URL                   -> embedding.base_url
  DOCRAG_EMBEDDING_MODEL            -> embedding.model
  DOCRAG_MAX_EMBEDDING_CACHE_SIZE   -> cache.max_size
  DOCRAG_CACHE_DIR                  -> cache.directory
  OPENAI_RATE_LIMIT                 -> rate_limit.max_requests_per_minute
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, model_validator

DEFAULT_CONFIG_PATH = Path("config/config.yaml")


class ChunkingConfig(BaseModel):
    strategy: Literal["semantic", "paragraph", "simple"] = "semantic"
    chunk_size: int = Field(2000, gt=0)
    overlap: int = Field(500, ge=0)
    max_chunks_per_document: int = Field(0, ge=0)


class EmbeddingConfig(BaseModel):
    model: str = "text-embedding-3-small"
    dimensions: int = Field(1536, gt=0)
    send_dimensions: bool = True          # ada-002 rejects the dimensions field
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout_seconds: float = Field(30.0, gt=0)
    client_max_retries: int = Field(0, ge=0)
    chars_per_token: int = Field(4, gt=0)
    max_tokens_per_text: int = Field(8000, gt=0)
    max_batch_items: int = Field(100, gt=0)
    api_token_limit: int = Field(300_000, gt=0)
    token_safety_margin: float = Field(0.9, gt=0, le=1)

    @property
    def max_batch_tokens(self) -> int:
        return int(self.api_token_limit * self.token_safety_margin)


class CacheConfig(BaseModel):
    max_size: int = Field(1000, gt=0)
    directory: Optional[Path] = Path(".embedding-cache")
    eviction_interval: int = Field(10, gt=0)     # evict check every N puts
    eviction_fraction: float = Field(0.2, gt=0, le=1)
    maintenance_seconds: float = Field(300.0, gt=0)


class RateLimitConfig(BaseModel):
    max_requests_per_minute: int = Field(60, gt=0)
    window_seconds: float = Field(60.0, gt=0)


class RetrievalConfig(BaseModel):
    top_k: int = Field(5, ge=0)
    min_score: float = Field(0.7, ge=-1, le=1)
    relaxed_min_score: Optional[float] = Field(0.3, ge=-1, le=1)
    mode: Literal["semantic", "keyword", "hybrid"] = "semantic"


class CombinedWeights(BaseModel):
    title: float = 0.3
    content: float = 0.7


class StoreConfig(BaseModel):
    similarity_threshold: float = Field(0.7, ge=-1, le=1)
    max_results: int = Field(5, ge=0)
    combined_weights: CombinedWeights = Field(default_factory=CombinedWeights)


class KnowledgeConfig(BaseModel):
    storage_path: Path = Path("data/knowledge")
    categories: list[str] = Field(default_factory=list)
    duplicate_threshold: float = Field(0.85, ge=0, le=1)
    keyword_triggers: list[str] = Field(
        default_factory=lambda: [
            "solution", "fixed", "resolved", "answer", "workaround", "problem", "issue", "error",
        ]
    )
    context_window: int = Field(3, gt=0)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[str] = "logs/docrag.log"


class Settings(BaseModel):
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def _check_overlap(self) -> "Settings":
        if self.chunking.overlap >= self.chunking.chunk_size:
            logger.warning(
                f"[Config] overlap ({self.chunking.overlap}) >= chunk_size "
                f"({self.chunking.chunk_size}); windows will advance one character at a time"
            )
        return self


_ENV_OVERRIDES: list[tuple[str, tuple[str, str]]] = [
    ("OPENAI_API_KEY", ("embedding", "api_key")),
    ("OPENAI_BASE_URL", ("embedding", "base_url")),
    ("DOCRAG_EMBEDDING_MODEL", ("embedding", "model")),
    ("DOCRAG_MAX_EMBEDDING_CACHE_SIZE", ("cache", "max_size")),
    ("DOCRAG_CACHE_DIR", ("cache", "directory")),
    ("OPENAI_RATE_LIMIT", ("rate_limit", "max_requests_per_minute")),
]


def _load_yaml(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    # A section whose children are all commented out loads as None.
    return {section: values for section, values in raw.items() if values is not None}


def load_settings(path: str | Path | None = None, use_env: bool = True) -> Settings:
    """
    Build Settings from YAML + environment.

    A missing default config file is fine (defaults apply); a missing file
    that was asked for explicitly raises FileNotFoundError.
    """
    raw: dict = {}
    if path is not None:
        raw = _load_yaml(Path(path))
    elif DEFAULT_CONFIG_PATH.exists():
        raw = _load_yaml(DEFAULT_CONFIG_PATH)

    if use_env:
        load_dotenv()
        for env_name, (section, key) in _ENV_OVERRIDES:
            value = os.getenv(env_name)
            if value:
                raw[section] = {**(raw.get(section) or {}), key: value}

    settings = Settings.model_validate(raw)
    logger.debug(
        f"[Config] model={settings.embedding.model} | "
        f"cache_max={settings.cache.max_size} | "
        f"rate_limit={settings.rate_limit.max_requests_per_minute}/min"
    )
    return settings
