"""Error types raised by the assistant core."""


class RagAssistantError(Exception):
    """Base class for all assistant errors."""


class RetrievalFailure(RagAssistantError):
    """Embedding or similarity search failed for one retrieval source."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source} retrieval failed: {message}")
        self.source = source


class ModelUnavailable(RagAssistantError):
    """The selected model is not present locally or cannot be loaded."""

    def __init__(self, model: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Model not available: {model}. Please download the model first."
        )
        self.model = model


class GenerationFailure(RagAssistantError):
    """The inference engine failed while generating a reply."""


class StorageError(RagAssistantError):
    """A storage read or write failed."""
