from __future__ import annotations
from typing import List, Optional


class TraceSession:
    def __init__(self) -> None:
        self.lines: List[str] = []

    def add(self, line: str) -> None:
        self.lines.append(line)

    def extend(self, many: list[str]) -> None:
        self.lines.extend(many)

    def tagged(self, tag: str) -> list[str]:
        prefix = f"[{tag}]"
        return [ln for ln in self.lines if ln.startswith(prefix)]

    def dump(self) -> list[str]:
        return list(self.lines)


def note(trace: Optional[TraceSession], tag: str, msg: str) -> None:
    """Record a tagged line when the caller opted into tracing."""
    if trace is not None:
        trace.add(f"[{tag}] {msg}")
