"""t333.watch API backend."""

__version__ = "1.0.0"
