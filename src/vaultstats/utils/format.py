"""Human readable formatting of metric values."""

from __future__ import annotations

from typing import Dict

from vaultstats.models import METRIC_FIELDS, DocumentMetrics

BYTE_UNITS = ("bytes", "KB", "MB", "GB", "TB", "PB")


def format_decimal(value: float, unit: str) -> str:
    """Format a count with grouped thousands, e.g. ``1,234 words``."""
    return f"{value:,} {unit}"


def format_bytes(value: float) -> str:
    """Format a byte size scaled by 1024 with two fraction digits."""
    scaled = float(value)
    index = 0
    while scaled > 1024 and index < len(BYTE_UNITS) - 1:
        scaled /= 1024
        index += 1
    return f"{scaled:,.2f} {BYTE_UNITS[index]}"


def format_metrics(metrics: DocumentMetrics) -> Dict[str, str]:
    """Format every field of a metrics record for display."""
    formatted: Dict[str, str] = {}
    for name in METRIC_FIELDS:
        value = getattr(metrics, name)
        formatted[name] = format_bytes(value) if name == "size" else format_decimal(value, name)
    return formatted
