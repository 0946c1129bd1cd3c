from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence

from .army_states import states_for_army
from .models import CombatOptions, GameInfo, UnitSnapshot, WeaponProfile
from .modifiers_runtime import ModifierLedger
from .schema_models import ArmyState, CombatRole, Rule
from .trace import TraceSession, note


@dataclass
class CombatContext:
    """Everything one rule evaluation may read, seen from one combat role."""
    attacker: UnitSnapshot
    defender: UnitSnapshot
    weapon: WeaponProfile
    game: GameInfo
    options: CombatOptions
    role: CombatRole
    army_states: List[ArmyState]
    modifiers: ModifierLedger
    trace: Optional[TraceSession] = None
    # weaponAbility:<key> / unitAbility:<key> -> granted abilities, for display
    ability_details: Dict[str, List[Any]] = field(default_factory=dict)

    @property
    def own_unit(self) -> UnitSnapshot:
        return self.attacker if self.role == "attacker" else self.defender

    @property
    def opposing_unit(self) -> UnitSnapshot:
        return self.defender if self.role == "attacker" else self.attacker

    def log(self, tag: str, msg: str) -> None:
        note(self.trace, tag, msg)


def build_combat_context(
    attacker: UnitSnapshot,
    defender: UnitSnapshot,
    weapon: WeaponProfile,
    game: Optional[GameInfo] = None,
    options: Optional[CombatOptions] = None,
    role: CombatRole = "attacker",
    army_states: Iterable[ArmyState] = (),
    trace: Optional[TraceSession] = None,
) -> CombatContext:
    """
    Assemble a fresh context for one role. Army states are narrowed to the evaluated
    role's army and to those live at the current turn/phase; the ledger is always new.
    """
    game = game or GameInfo()
    own = attacker if role == "attacker" else defender
    scoped = states_for_army(army_states, own.army_id, game.current_turn, game.current_phase)
    note(trace, "Context", f"{role} view: {own.name or own.id} ({len(scoped)} live army states)")
    return CombatContext(
        attacker=attacker,
        defender=defender,
        weapon=weapon,
        game=game,
        options=options or CombatOptions(),
        role=role,
        army_states=scoped,
        modifiers=ModifierLedger(),
        trace=trace,
    )


# -------- rule setup --------

def combat_phase_for(weapon: WeaponProfile) -> Literal["shooting", "fight"]:
    return "fight" if weapon.weapon_type == "melee" else "shooting"


def filter_rules_for_phase(rules: Iterable[Rule], phase: str) -> list[Rule]:
    return [r for r in rules if r.trigger.includes_phase(phase)]


def dedupe_rules(rules: Iterable[Rule]) -> list[Rule]:
    seen: set[str] = set()
    out: list[Rule] = []
    for r in rules:
        if r.id in seen:
            continue
        seen.add(r.id)
        out.append(r)
    return out


def prepare_side_rules(army_rules: Sequence[Rule], unit_rules: Sequence[Rule], phase: str) -> list[Rule]:
    """Army-wide rules always ride along; unit rules are narrowed to the combat phase."""
    return dedupe_rules([*army_rules, *filter_rules_for_phase(unit_rules, phase)])
