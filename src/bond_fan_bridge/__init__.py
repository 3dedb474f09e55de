"""Core package for the Bond fan bridge - capability control for LAN ceiling fans."""

__all__ = [
    "config",
    "logging",
    "metrics",
    "client",
    "profile",
    "mapper",
    "device",
    "poller",
    "validator",
    "settings",
    "pairing",
    "cli",
]
__version__ = "1.0.0"
