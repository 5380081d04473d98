"""Chat and email notification gateway for a monitoring backend."""

__version__ = "0.1.0"
