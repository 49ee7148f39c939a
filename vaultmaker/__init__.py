"""vaultmaker: staged pipeline that turns source documents into a linked note vault."""

__version__ = "0.4.0"
