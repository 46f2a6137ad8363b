"""Health assistant chat core: conversation store, inference gateway and relay."""

__version__ = "0.1.0"
