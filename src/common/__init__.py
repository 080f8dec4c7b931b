# ABOUTME: Makes the shared common package importable across the engine, store, and CLI.
# ABOUTME: Re-exports schema types and config loading for convenience.

from .schemas import (
    MAX_TOTAL,
    SUBJECT_COUNT,
    Assessment,
    Category,
    Feedback,
    Subject,
    SubjectSnapshot,
)
from .config import TrackerConfig, configure_logging, load_config

__all__ = [
    "MAX_TOTAL",
    "SUBJECT_COUNT",
    "Assessment",
    "Category",
    "Feedback",
    "Subject",
    "SubjectSnapshot",
    "TrackerConfig",
    "configure_logging",
    "load_config",
]
