"""Terminal client for Phoenix message threads."""

__version__ = "0.1.0"
