"""Photo/document ingestion pipeline for the project portfolio."""

__version__ = "0.1.0"
