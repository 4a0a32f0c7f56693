"""On-device retrieval-augmented chat assistant."""

__version__ = "0.1.0"
