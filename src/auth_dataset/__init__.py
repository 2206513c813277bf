"""Synthetic authentication dataset for data-analysis exercises."""

from .cli import cli

__all__ = ["cli", "main"]


def main() -> None:
    """Entry point for the auth-dataset CLI."""
    cli()
