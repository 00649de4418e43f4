"""Multi-key API credential pool for AI providers."""

__version__ = "0.1.0"
