import logging
from typing import List, Optional

from .interface import IFolderPicker

logger = logging.getLogger("folder_picker")


class TkFolderPicker(IFolderPicker):
    """Native directory dialog through tkinter."""

    def prompt(self, title: str) -> Optional[str]:
        try:
            import tkinter as tk
            from tkinter import filedialog
        except ImportError:
            logger.warning("tkinter is not available, cannot prompt for a folder")
            return None

        try:
            root = tk.Tk()
        except tk.TclError as e:
            logger.warning(f"No display available for folder picker: {e}")
            return None
        try:
            root.withdraw()
            chosen = filedialog.askdirectory(title=title, mustexist=True, parent=root)
        finally:
            root.destroy()
        return chosen or None


class StaticFolderPicker(IFolderPicker):
    """Answers prompts from a prepared list. Used headless and in tests."""

    def __init__(self, answers: Optional[List[Optional[str]]] = None):
        self.answers = list(answers or [])
        self.prompts: List[str] = []

    def prompt(self, title: str) -> Optional[str]:
        self.prompts.append(title)
        if not self.answers:
            return None
        return self.answers.pop(0)
