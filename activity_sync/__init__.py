"""Activity sync service: recurring Jira/GitHub ingestion into unified activities."""

__version__ = "0.1.0"
