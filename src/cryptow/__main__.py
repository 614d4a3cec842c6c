"""Entry point for running cryptow directly.

Usage:
    python -m cryptow run myprofile -- --some-flag
"""

from .cli.main import cli

if __name__ == "__main__":
    cli()
