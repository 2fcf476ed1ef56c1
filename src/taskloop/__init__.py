"""taskloop: file-backed task queue and validation gate for AI coding agents."""

__version__ = "1.0.0"
