"""AI-assisted case narrative gateway with quotas, caching and offline fallback."""

__version__ = "1.0.0"
