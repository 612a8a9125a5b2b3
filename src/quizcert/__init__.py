"""Quiz attempt lifecycle and automated course certification engine."""

__version__ = "0.1.0"
