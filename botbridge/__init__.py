"""botbridge: HTTP API gateway and webhook delivery for bot clients."""

__version__ = "0.1.0"
