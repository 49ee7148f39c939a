from __future__ import annotations


class VaultmakerError(Exception):
    """Base error for the pipeline."""


class PreconditionError(VaultmakerError):
    """The run cannot start (no vault selected or no generation credential)."""


class GenerationError(VaultmakerError):
    """The generation backend failed or returned no content."""


class EmbeddingError(VaultmakerError):
    """The embedding backend failed or returned an empty/invalid vector."""
