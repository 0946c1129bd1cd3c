from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .models import WeaponProfile
from .modifiers_runtime import ModifierLedger

_RAPID_FIRE = re.compile(r"^rapid[\s-]*fire\s*(\d+)$")
_SUSTAINED = re.compile(r"^sustained[\s-]*hits\s*(\d+)$")
_MELTA = re.compile(r"^melta\s*(\d+)$")
_ANTI = re.compile(r"^anti-([\w\s]+?)\s+(\d)\+?$")

# normalized keyword text -> attribute name on WeaponKeywords
_FLAG_WORDS = {
    "lethal hits": "lethal_hits",
    "twin-linked": "twin_linked",
    "twin linked": "twin_linked",
    "lance": "lance",
    "torrent": "torrent",
    "heavy": "heavy",
    "blast": "blast",
    "devastating wounds": "devastating_wounds",
    "ignores cover": "ignores_cover",
    "hazardous": "hazardous",
    "assault": "assault",
    "pistol": "pistol",
    "indirect fire": "indirect_fire",
    "extra attacks": "extra_attacks",
    "precision": "precision",
}

# camelCase ability flag id -> attribute name
_FLAG_IDS = {
    "lethalHits": "lethal_hits",
    "twinLinked": "twin_linked",
    "lance": "lance",
    "torrent": "torrent",
    "heavy": "heavy",
    "blast": "blast",
    "devastatingWounds": "devastating_wounds",
    "ignoresCover": "ignores_cover",
    "hazardous": "hazardous",
    "assault": "assault",
    "pistol": "pistol",
    "indirectFire": "indirect_fire",
    "extraAttacks": "extra_attacks",
}


@dataclass
class WeaponKeywords:
    rapid_fire: int = 0
    sustained_hits: int = 0
    melta: int = 0
    anti: List[Tuple[str, int]] = field(default_factory=list)
    lethal_hits: bool = False
    twin_linked: bool = False
    lance: bool = False
    torrent: bool = False
    heavy: bool = False
    blast: bool = False
    devastating_wounds: bool = False
    ignores_cover: bool = False
    hazardous: bool = False
    assault: bool = False
    pistol: bool = False
    indirect_fire: bool = False
    extra_attacks: bool = False
    precision: bool = False

    def has_flag(self, flag_id: str) -> bool:
        attr = _FLAG_IDS.get(flag_id)
        return bool(attr and getattr(self, attr))

    def anti_threshold_for(self, categories: List[str]) -> Optional[int]:
        cats = {c.lower() for c in categories}
        hits = [t for kw, t in self.anti if kw.lower() in cats]
        return min(hits) if hits else None

    def active_flags(self) -> list[str]:
        out = [attr for attr in _FLAG_IDS.values() if getattr(self, attr)]
        if self.rapid_fire:
            out.append("rapid_fire")
        if self.sustained_hits:
            out.append("sustained_hits")
        if self.melta:
            out.append("melta")
        if self.anti:
            out.append("anti")
        return sorted(set(out))


def parse_keywords(keywords: List[str]) -> WeaponKeywords:
    kw = WeaponKeywords()
    for raw in keywords:
        text = " ".join(raw.strip().lower().split())
        m = _RAPID_FIRE.match(text)
        if m:
            kw.rapid_fire = max(kw.rapid_fire, int(m.group(1)))
            continue
        m = _SUSTAINED.match(text)
        if m:
            kw.sustained_hits = max(kw.sustained_hits, int(m.group(1)))
            continue
        m = _MELTA.match(text)
        if m:
            kw.melta = max(kw.melta, int(m.group(1)))
            continue
        m = _ANTI.match(text)
        if m:
            kw.anti.append((m.group(1).strip(), int(m.group(2))))
            continue
        attr = _FLAG_WORDS.get(text)
        if attr:
            setattr(kw, attr, True)
    return kw


def effective_keywords(weapon: WeaponProfile, ledger: Optional[ModifierLedger] = None,
                       ability_details: Optional[Dict[str, List[Any]]] = None) -> WeaponKeywords:
    """Printed weapon keywords merged with abilities granted through the ledger."""
    kw = parse_keywords(weapon.keywords)
    if ledger is None:
        return kw
    details = ability_details or {}
    for stat in ledger.stats():
        if not stat.startswith("weaponAbility:") or not ledger.has(stat):
            continue
        key = stat.split(":", 1)[1]
        if key in _FLAG_IDS:
            setattr(kw, _FLAG_IDS[key], True)
            continue
        for ability in details.get(stat, []):
            if key == "rapidFire":
                kw.rapid_fire = max(kw.rapid_fire, ability.x)
            elif key == "sustainedHits":
                kw.sustained_hits = max(kw.sustained_hits, ability.x)
            elif key == "melta":
                kw.melta = max(kw.melta, ability.x)
            elif key == "anti":
                kw.anti.append((ability.keyword, ability.threshold))
    return kw
