from __future__ import annotations
from pathlib import Path
import sys

def frozen_base_dir() -> Path:
    # PyInstaller --onefile unpacks data to sys._MEIPASS
    if hasattr(sys, "_MEIPASS"):
        return Path(sys._MEIPASS) / "battlecalc"  # type: ignore[attr-defined]
    # dev / installed: src/battlecalc
    return Path(__file__).resolve().parent.parent

def content_dir() -> Path:
    # Bundled rules, stratagems and scenarios; embed with --add-data "battlecalc/content"
    return frozen_base_dir() / "content"
