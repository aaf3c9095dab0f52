"""Interaction shell package."""

from allocation_ledger.services.shell.interface import InteractionShell, LoggingShell

__all__ = ["InteractionShell", "LoggingShell"]
