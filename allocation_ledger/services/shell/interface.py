"""
Interaction Shell Interface

The ledger never talks to a screen. Whatever front end drives it (the
Streamlit app, a script, a test) provides these three calls: a blocking
yes/no confirmation and two fire-and-forget outcome reports.
"""

from abc import ABC, abstractmethod

import structlog


class InteractionShell(ABC):
    """User-facing confirmation and notification collaborator."""

    @abstractmethod
    async def confirm(self, title: str, message: str) -> bool:
        """
        Ask the user a yes/no question.

        Returns:
            True only if the user explicitly agreed
        """
        pass

    @abstractmethod
    async def notify_success(self, title: str, message: str) -> None:
        """Report a successful outcome."""
        pass

    @abstractmethod
    async def notify_error(self, title: str, message: str) -> None:
        """Report a failed or rejected operation."""
        pass


class LoggingShell(InteractionShell):
    """
    Headless shell for scripts and background jobs.

    Answers every confirmation with a fixed decision and writes
    notifications to the structured log.
    """

    def __init__(self, auto_confirm: bool = False):
        self._auto_confirm = auto_confirm
        self._logger = structlog.get_logger(__name__)

    async def confirm(self, title: str, message: str) -> bool:
        self._logger.info(
            "confirmation_requested",
            title=title,
            message=message,
            answer=self._auto_confirm,
        )
        return self._auto_confirm

    async def notify_success(self, title: str, message: str) -> None:
        self._logger.info("operation_succeeded", title=title, message=message)

    async def notify_error(self, title: str, message: str) -> None:
        self._logger.error("operation_failed", title=title, message=message)
