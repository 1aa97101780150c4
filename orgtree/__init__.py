"""orgtree - closure-table hierarchy service."""

__version__ = "0.1.0"
