from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .schema_models import Stratagem

# Game phase names (as passed by callers) -> stratagem phase names
_PHASE_ALIASES = {
    "movement": "move",
    "shooting": "shoot",
}


def _norm(s: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]+", "", (s or "").lower())


def _stratagem_phase(phase: str) -> str:
    return _PHASE_ALIASES.get(phase, phase)


@dataclass
class DrawerEntry:
    stratagem: Stratagem
    is_available_now: bool


def available_stratagems(catalog: Iterable[Stratagem], faction: Optional[str],
                         detachment: Optional[str]) -> List[Stratagem]:
    """Core stratagems plus those of the given faction and detachment."""
    fac, det = _norm(faction), _norm(detachment)
    out: List[Stratagem] = []
    for s in catalog:
        if s.is_core:
            out.append(s)
            continue
        sfac = _norm(s.faction)
        if not fac or (sfac not in fac and fac not in sfac):
            continue
        if s.detachment and det not in {_norm(d) for d in [s.detachment, *s.detachmentAliases]}:
            continue
        out.append(s)
    return out


def stratagems_for_phase(stratagems: Iterable[Stratagem], phase: str) -> List[Stratagem]:
    p = _stratagem_phase(phase)
    out: List[Stratagem] = []
    for s in stratagems:
        if s.phase == "any" or s.phase == p:
            out.append(s)
        elif s.phase == "move-or-charge" and p in ("move", "charge"):
            out.append(s)
    return out


def turn_allows(stratagem: Stratagem, is_own_turn: bool) -> bool:
    if stratagem.turn == "either":
        return True
    return stratagem.turn == ("your-turn" if is_own_turn else "opponent-turn")


def round_allows(stratagem: Stratagem, battle_round: Optional[int]) -> bool:
    if battle_round is None or stratagem.turnRestriction == "any":
        return True
    if stratagem.turnRestriction == "first-turn-only":
        return battle_round == 1
    return battle_round >= 2


def _drawer_key(s: Stratagem):
    # detachment-specific first, then by name
    return (0 if s.detachment else 1, s.name.lower())


def usable_stratagems(catalog: Iterable[Stratagem], faction: Optional[str], detachment: Optional[str],
                      phase: str, is_own_turn: bool, battle_round: Optional[int] = None) -> List[Stratagem]:
    pool = available_stratagems(catalog, faction, detachment)
    usable = [s for s in stratagems_for_phase(pool, phase)
              if turn_allows(s, is_own_turn) and round_allows(s, battle_round)]
    return sorted(usable, key=_drawer_key)


def drawer_entries(stratagems: Iterable[Stratagem], is_own_turn: bool) -> List[DrawerEntry]:
    """Every stratagem, the ones usable this turn first; each group ordered detachment-first."""
    now = sorted((s for s in stratagems if turn_allows(s, is_own_turn)), key=_drawer_key)
    later = sorted((s for s in stratagems if not turn_allows(s, is_own_turn)), key=_drawer_key)
    return [DrawerEntry(s, True) for s in now] + [DrawerEntry(s, False) for s in later]
