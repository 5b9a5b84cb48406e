"""AI provider failover: health monitoring, circuit breaking, retry and fallback."""

__version__ = "0.1.0"
