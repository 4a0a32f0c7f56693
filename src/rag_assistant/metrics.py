"""Metrics log — one CSV row per generated reply."""

import csv
import logging
import threading
from pathlib import Path

from rag_assistant.models import GenerationMetrics

logger = logging.getLogger(__name__)


class MetricsLogger:
    """Appends GenerationMetrics rows to a CSV file, writing a header first."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def log(self, metrics: GenerationMetrics) -> None:
        with self._lock:
            is_new = not self.path.exists()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                if is_new:
                    writer.writerow(GenerationMetrics.field_names())
                writer.writerow(metrics.as_row())
        logger.debug(
            "Metrics: prefill %.0fms, %.1f tok/s, %d prompt tokens",
            metrics.prefill_ms,
            metrics.decode_tokens_per_s,
            metrics.prompt_tokens,
        )

    def read(self) -> list[dict[str, str]]:
        """All rows logged so far, keyed by column name."""
        if not self.path.exists():
            return []
        with self.path.open(newline="", encoding="utf-8") as f:
            return list(csv.DictReader(f))
