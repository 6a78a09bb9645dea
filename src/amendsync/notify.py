"""Toast notifications for user-visible outcomes.

The core reports success and failure of user actions as fire-and-forget
toasts. Nothing is returned and nothing a notifier does may fail the
action that triggered it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Protocol

logger = logging.getLogger(__name__)

ToastVariant = Literal["default", "success", "info", "warning", "destructive"]

_NICEGUI_TYPES: dict[str, str] = {
    "default": "info",
    "success": "positive",
    "info": "info",
    "warning": "warning",
    "destructive": "negative",
}


@dataclass(frozen=True)
class Toast:
    """A single user-facing message."""

    title: str
    description: str = ""
    variant: ToastVariant = "default"


class NotifierProtocol(Protocol):
    """Anything that can show a toast."""

    def notify(self, toast: Toast) -> None: ...


class NiceGUINotifier:
    """Shows toasts in the current NiceGUI client."""

    def notify(self, toast: Toast) -> None:
        from nicegui import ui

        options: dict[str, str] = {}
        if toast.description:
            options["caption"] = toast.description
        try:
            ui.notify(toast.title, type=_NICEGUI_TYPES[toast.variant], **options)
        except RuntimeError:
            # No client slot (e.g. called from a background task)
            logger.warning("Toast dropped outside a client context: %s", toast)


class LoggingNotifier:
    """Writes toasts to the log; used by the CLI and headless services."""

    def notify(self, toast: Toast) -> None:
        level = logging.WARNING if toast.variant == "destructive" else logging.INFO
        logger.log(level, "TOAST %s: %s", toast.title, toast.description)


class RecordingNotifier:
    """Keeps every toast in order; used by tests."""

    def __init__(self) -> None:
        self.toasts: list[Toast] = []

    def notify(self, toast: Toast) -> None:
        self.toasts.append(toast)

    @property
    def titles(self) -> list[str]:
        return [toast.title for toast in self.toasts]

    def clear(self) -> None:
        self.toasts.clear()
