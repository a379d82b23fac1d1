"""ESD workstation safety monitor."""

__version__ = "0.1.0"
