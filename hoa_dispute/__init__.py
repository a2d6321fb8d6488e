"""HOA/condo fee dispute assistant API."""

__version__ = "1.0.0"
