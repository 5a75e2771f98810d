"""employer-dedup: duplicate detection and merge workflow for pending employers."""

__version__ = "0.1.0"
