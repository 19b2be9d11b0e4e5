"""Administrative editor for user quota and capability records."""

__version__ = "0.1.0"
