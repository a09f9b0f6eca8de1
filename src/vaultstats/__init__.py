"""vaultstats - live statistics for a tree of markdown notes and attachments."""

__version__ = "0.1.0"
