"""Per-document metrics extraction and incremental aggregation."""
