"""Contact reconciliation and cross-source synchronization."""

__version__ = "0.1.0"
