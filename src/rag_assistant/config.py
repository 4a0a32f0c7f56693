"""Centralized configuration for the assistant."""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChunkConfig(BaseSettings):
    """Document chunking parameters (characters)."""

    model_config = SettingsConfigDict(env_prefix="CHUNK_", frozen=True)

    size: int = Field(default=700, gt=0)
    overlap: int = Field(default=420, ge=0)

    @model_validator(mode="after")
    def _overlap_less_than_size(self) -> "ChunkConfig":
        if self.overlap >= self.size:
            msg = f"overlap ({self.overlap}) must be less than size ({self.size})"
            raise ValueError(msg)
        return self


class EmbeddingConfig(BaseSettings):
    """Sentence embedding settings."""

    model_config = SettingsConfigDict(env_prefix="EMBED_", frozen=True)

    dimension: int = Field(default=512, gt=0)
    # 512-d distilled Universal Sentence Encoder.
    model_name: str = "distiluse-base-multilingual-cased-v2"
    use_model: bool = True


class RetrievalConfig(BaseSettings):
    """Similarity floors, result sizes and re-ranking weights."""

    model_config = SettingsConfigDict(env_prefix="RETRIEVAL_", frozen=True)

    document_top_k: int = Field(default=4, gt=0)
    document_min_similarity: float = Field(default=0.3, ge=-1.0, le=1.0)
    duplicate_threshold: float = Field(default=0.8, ge=-1.0, le=1.0)
    memory_top_k: int = Field(default=3, gt=0)
    memory_min_similarity: float = Field(default=0.2, ge=-1.0, le=1.0)
    mmr_lambda: float = Field(default=0.7, ge=0.0, le=1.0)


class BudgetConfig(BaseSettings):
    """Token budgets for the retrieved blocks of a prompt."""

    model_config = SettingsConfigDict(env_prefix="BUDGET_", frozen=True)

    context_tokens: int = Field(default=220, gt=0)
    memory_tokens: int = Field(default=80, gt=0)


class ConversationConfig(BaseSettings):
    """In-memory conversation history settings."""

    model_config = SettingsConfigDict(env_prefix="CONVERSATION_", frozen=True)

    max_prompt_tokens: int = Field(default=2048, gt=0)
    replay_turns: int = Field(default=2, ge=0)


class LLMConfig(BaseSettings):
    """Local model and generation settings."""

    model_config = SettingsConfigDict(env_prefix="LLM_", frozen=True)

    model: str = "gemma3:1b"
    ollama_host: str | None = None
    n_threads: int | None = Field(default=None, gt=0)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    default_max_tokens: int = Field(default=96, gt=0)
    min_max_tokens: int = Field(default=64, gt=0)
    max_max_tokens: int = Field(default=256, gt=0)
    stream_buffer: int = Field(default=64, gt=0)

    @model_validator(mode="after")
    def _max_token_bounds(self) -> "LLMConfig":
        if self.min_max_tokens > self.max_max_tokens:
            msg = (
                f"min_max_tokens ({self.min_max_tokens}) must not exceed "
                f"max_max_tokens ({self.max_max_tokens})"
            )
            raise ValueError(msg)
        return self


class MetricsConfig(BaseSettings):
    """Generation metrics log settings."""

    model_config = SettingsConfigDict(env_prefix="METRICS_", frozen=True)

    enabled: bool = True
    path: str = "./generation_metrics.csv"


class AppConfig(BaseSettings):
    """Top-level application configuration."""

    model_config = SettingsConfigDict(frozen=True)

    chunk: ChunkConfig = Field(default_factory=ChunkConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
