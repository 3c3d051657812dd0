"""ClipInsight pipeline orchestration core."""

__version__ = "1.0.0"
