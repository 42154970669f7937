"""Label catalog loading.

The catalog is index-significant: label ``i`` names output channel ``i`` of
the model. A missing or empty labels file never blocks startup; the default
yen catalog is used instead and the fallback is logged.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_LABELS: tuple[str, ...] = (
    "1 yen",
    "5 yen",
    "10 yen",
    "50 yen",
    "100 yen",
    "500 yen",
    "other",
)


def parse_labels(text: str) -> tuple[str, ...]:
    """Return the non-blank, trimmed lines of ``text`` in order."""
    return tuple(stripped for line in text.splitlines() if (stripped := line.strip()))


def load_catalog(source: str | Path | None) -> tuple[str, ...]:
    """Load the label catalog from a text file, falling back to DEFAULT_LABELS."""
    if source is None:
        logger.warning("No labels file configured, using default catalog")
        return DEFAULT_LABELS

    path = Path(source)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Cannot read labels from %s (%s), using default catalog", path, exc)
        return DEFAULT_LABELS

    labels = parse_labels(text)
    if not labels:
        logger.warning("Labels file %s is empty, using default catalog", path)
        return DEFAULT_LABELS

    logger.info("Loaded %d labels from %s", len(labels), path)
    return labels
