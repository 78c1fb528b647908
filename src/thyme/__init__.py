"""Photo library indexing: metadata ingestion, set ordering, and cached thumbnails."""

__version__ = "0.1.0"
