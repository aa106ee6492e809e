"""Shared rich console used for all user-facing progress and warnings."""

from rich.console import Console

console = Console(stderr=True)
