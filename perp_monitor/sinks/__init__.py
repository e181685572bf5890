"""Trade sink implementations."""
from .logging_sink import LoggingSink

__all__ = ["LoggingSink"]
