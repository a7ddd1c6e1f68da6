"""AI Business OS connector sync and normalization core"""

__version__ = "0.1.0"
