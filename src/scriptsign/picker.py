"""Choosing the script to sign."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from .utils.logging import get_logger

log = get_logger()


@dataclass(frozen=True)
class PickResult:
    path: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return not self.path

    @classmethod
    def cancel(cls) -> "PickResult":
        return cls(None)


@runtime_checkable
class FilePicker(Protocol):
    def pick(self, extension: str) -> PickResult: ...


@dataclass
class FixedPathPicker:
    """Path given up front (command line, automation)."""

    path: Optional[str]

    def pick(self, extension: str) -> PickResult:
        return PickResult(self.path or None)


@dataclass
class TkFilePicker:
    title: str = "Select a script to sign"

    def pick(self, extension: str) -> PickResult:
        # tkinter is optional on some Python builds; only needed for the dialog
        import tkinter
        from tkinter import filedialog

        ext = extension if extension.startswith(".") else "." + extension
        root = tkinter.Tk()
        root.withdraw()
        try:
            root.attributes("-topmost", True)
            chosen = filedialog.askopenfilename(
                title=self.title,
                filetypes=[(f"{ext[1:].upper()} scripts", f"*{ext}")],
            )
        finally:
            root.destroy()
        # askopenfilename returns '' (or an empty tuple on some platforms) on cancel
        if not chosen or not isinstance(chosen, str):
            log.info("file selection cancelled")
            return PickResult.cancel()
        return PickResult(chosen)
