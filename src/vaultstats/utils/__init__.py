"""Text, file and formatting helpers."""
