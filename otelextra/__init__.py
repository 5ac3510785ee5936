"""Span and metric instrumentation for DB-API databases and structured loggers."""

__version__ = "0.1.17"

__all__ = [
    "attributes",
    "tracing",
    "logfields",
    "otelsql",
    "sqlx",
    "logger",
    "sugar",
    "registry",
]