"""Conversational automation core: match, collect, execute."""

__version__ = "0.1.0"
