"""Command-line interface for cryptow."""
