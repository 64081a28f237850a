"""ReviewHub backend: reviews, comments and chat over a remote-first, local-fallback data layer."""

__version__ = "1.0.0"
