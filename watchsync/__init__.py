"""Two-person synchronized video watching over a direct peer link."""

__version__ = "0.1.0"
