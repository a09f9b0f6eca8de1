"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

VAULT_ENV_VAR = "VAULTSTATS_VAULT"

# Order in which fields are displayed.
DISPLAY_ORDER: Tuple[str, ...] = ("notes", "attachments", "files", "links", "words", "size")


def _get_default_vault_path() -> Path:
    """Vault from the environment, falling back to the working directory."""
    env_path = os.environ.get(VAULT_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return Path(".")


@dataclass(slots=True)
class AppConfig:
    vault_path: Path | None = None
    interval: float = 2.0
    poll_interval: float = 2.0
    note_extensions: Tuple[str, ...] = ("md",)
    include_hidden: bool = False

    # Display toggles; they never change computed values.
    display_individual_items: bool = False
    show_notes: bool = False
    show_attachments: bool = False
    show_files: bool = False
    show_links: bool = False
    show_words: bool = False
    show_size: bool = False

    def __post_init__(self) -> None:
        if self.vault_path is None:
            self.vault_path = _get_default_vault_path()
        if self.interval <= 0:
            raise ValueError("interval must be > 0")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

    def resolve_vault_path(self, base_dir: Path | None = None) -> Path:
        if self.vault_path is None:
            self.vault_path = _get_default_vault_path()
        if Path(self.vault_path).is_absolute() or base_dir is None:
            return Path(self.vault_path)
        return base_dir / self.vault_path

    def visible_fields(self) -> List[str]:
        """Names of the metric fields to display.

        With ``display_individual_items`` only the fields whose ``show_``
        toggle is set are displayed; otherwise every field is.
        """
        if self.display_individual_items:
            return [name for name in DISPLAY_ORDER if getattr(self, f"show_{name}")]
        return list(DISPLAY_ORDER)
