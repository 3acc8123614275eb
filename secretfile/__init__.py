"""Structured documents with per-value encryption, and JSON, binary and dotenv stores."""

__version__ = "0.1.0"