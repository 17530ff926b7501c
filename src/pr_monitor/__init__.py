"""Pull request monitor: multi-provider review ingestion and fix suggestions."""

__version__ = "0.1.0"
