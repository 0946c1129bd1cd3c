from __future__ import annotations
from typing import Dict, List, Tuple, Union

from .schema_models import Modifier

Number = Union[int, float]


def _num(v: float) -> Number:
    return int(v) if float(v).is_integer() else v


class ModifierLedger:
    """
    Per-resolution accumulator of stat adjustments.

    Entries for a stat are kept in priority order (lower first); equal priorities keep
    insertion order. Folding rules for apply():
      1) add/subtract accumulate onto the base
      2) set replaces base and accumulation; the last set in priority order wins
      3) clamp-min / clamp-max bound the result, in priority order
    A ledger belongs to one attack resolution and is never reused.
    """

    def __init__(self) -> None:
        self._by_stat: Dict[str, List[Modifier]] = {}

    def add(self, mod: Modifier) -> None:
        lst = self._by_stat.setdefault(mod.stat, [])
        # insert after every entry with priority <= mod.priority (stable)
        idx = len(lst)
        while idx > 0 and lst[idx - 1].priority > mod.priority:
            idx -= 1
        lst.insert(idx, mod)

    def all_entries(self, stat: str) -> list[Modifier]:
        return list(self._by_stat.get(stat, []))

    def entries(self) -> list[Modifier]:
        out: list[Modifier] = []
        for lst in self._by_stat.values():
            out.extend(lst)
        return out

    def stats(self) -> list[str]:
        return [s for s, lst in self._by_stat.items() if lst]

    def has(self, stat: str) -> bool:
        return any(m.value > 0 for m in self._by_stat.get(stat, []))

    def clear_by_source(self, rule_id: str) -> int:
        removed = 0
        for stat in list(self._by_stat):
            kept = [m for m in self._by_stat[stat] if m.source != rule_id]
            removed += len(self._by_stat[stat]) - len(kept)
            if kept:
                self._by_stat[stat] = kept
            else:
                del self._by_stat[stat]
        return removed

    def net_value(self, stat: str) -> Number:
        return _num(sum(m.signed_value for m in self._by_stat.get(stat, [])))

    def apply(self, stat: str, base: Number) -> Number:
        value, _ = self.apply_with_trace(stat, base)
        return value

    def apply_with_trace(self, stat: str, base: Number) -> Tuple[Number, list[str]]:
        mods = self._by_stat.get(stat, [])
        lines: list[str] = []
        if not mods:
            return base, lines

        current: float = base
        for m in mods:
            if m.operation in ("add", "subtract"):
                current += m.signed_value
                lines.append(f"[Ledger] {stat} {m.operation} {m.value} ({m.source}) -> {_num(current)}")

        sets = [m for m in mods if m.operation == "set"]
        if sets:
            last = sets[-1]
            current = last.value
            lines.append(f"[Ledger] {stat} set {last.value} ({last.source}) -> {_num(current)}")

        for m in mods:
            if m.operation == "clamp-min" and current < m.value:
                current = m.value
                lines.append(f"[Ledger] {stat} clamp-min {m.value} ({m.source}) -> {_num(current)}")
            elif m.operation == "clamp-max" and current > m.value:
                current = m.value
                lines.append(f"[Ledger] {stat} clamp-max {m.value} ({m.source}) -> {_num(current)}")

        return _num(current), lines

    def __len__(self) -> int:
        return sum(len(lst) for lst in self._by_stat.values())
