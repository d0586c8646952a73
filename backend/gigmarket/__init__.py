"""Service marketplace order lifecycle engine."""

__version__ = "1.0.0"
