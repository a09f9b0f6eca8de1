"""Exceptions raised by the vault store and metadata provider."""

from __future__ import annotations


class VaultStatsError(Exception):
    """Base class for vaultstats errors."""


class MetadataUnavailable(VaultStatsError):
    """Structural metadata cannot be obtained for a document.

    Raised when the document vanished (deleted or renamed) or could not be
    parsed. The collector treats it as absent metrics.
    """


class ContentReadFailure(VaultStatsError):
    """Raw content of a document could not be read."""
