"""Version information for entstore."""

__version__ = "0.1.0"
