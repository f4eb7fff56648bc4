"""modsync — install and keep in sync trees of declarative content modules."""

__version__ = "0.4.0"
