"""diskuto-sync: keeps Diskuto servers in sync with each other."""

__version__ = "0.1.0"
