"""Document store and structural metadata for a vault on disk."""
