"""DNS serving with domain rules, connection destination sniffing and upstream server selection."""

__version__ = "0.1.0"