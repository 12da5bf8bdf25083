# src/koharu/__init__.py: Lifecycle CLI for the koharu blog theme.

__version__ = "0.1.0"
