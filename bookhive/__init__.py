"""BookHive caching and background-job core."""

__version__ = "1.0.0"
