from __future__ import annotations
from typing import Iterable, List, Optional, Sequence

from .schema_models import ArmyState, ChoiceRule, Rule

PHASE_ORDER = ["start-of-battle", "command", "movement", "shooting", "charge", "fight"]


def phase_index(phase: Optional[str]) -> int:
    """Position of a phase within a turn; unknown phases ("any") sort last."""
    if phase in PHASE_ORDER:
        return PHASE_ORDER.index(phase)
    return len(PHASE_ORDER)


def is_live(state: ArmyState, current_turn: int, current_phase: Optional[str] = None) -> bool:
    """
    A state is live from its activation turn onward. With an expiry phase set it stays
    live through the end of that phase on expires_turn (default: the activation turn).
    """
    if current_turn < state.activated_turn:
        return False
    if state.expires_phase is None:
        return True
    expires_turn = state.expires_turn if state.expires_turn is not None else state.activated_turn
    if current_turn < expires_turn:
        return True
    if current_turn > expires_turn:
        return False
    if current_phase is None:
        return True
    return phase_index(current_phase) <= phase_index(state.expires_phase)


def states_for_army(states: Iterable[ArmyState], army_id: Optional[str],
                    current_turn: Optional[int] = None,
                    current_phase: Optional[str] = None) -> list[ArmyState]:
    if not army_id:
        return []
    out = [s for s in states if s.army_id == army_id]
    if current_turn is not None:
        out = [s for s in out if is_live(s, current_turn, current_phase)]
    return out


def find_choice_value(states: Iterable[ArmyState], choice_id: str) -> Optional[str]:
    """Most recently activated non-empty value recorded for a choice id."""
    best: Optional[ArmyState] = None
    for s in states:
        if s.state != choice_id or not s.has_value:
            continue
        if best is None or s.activated_turn >= best.activated_turn:
            best = s
    return best.choice_value if best else None


def _choice_rules(rules: Iterable[Rule]) -> List[ChoiceRule]:
    return [r for r in rules if isinstance(r, ChoiceRule)]


def _is_start_of_battle(rule: ChoiceRule) -> bool:
    return "start-of-battle" in rule.trigger.phases()


def _is_per_turn(rule: ChoiceRule) -> bool:
    return rule.choice.lifetime.t in ("turn", "phase") and rule.trigger.limit != "once-per-battle"


def pending_command_choices(rules: Sequence[Rule], states: Sequence[ArmyState],
                            current_turn: int) -> list[ChoiceRule]:
    """
    Army-scoped choice rules the player still has to answer in their command phase.
    A state without a chosen value does not resolve a choice. Once-per-battle choices
    are only offered on turn 1.
    """
    out: list[ChoiceRule] = []
    for rule in _choice_rules(rules):
        if rule.scope != "army" or _is_start_of_battle(rule):
            continue
        if "command" not in rule.trigger.phases() or rule.trigger.turn != "own":
            continue
        answered = [s for s in states if s.state == rule.choice.id and s.has_value]
        if rule.trigger.limit == "once-per-battle":
            if current_turn == 1 and not answered:
                out.append(rule)
        elif not answered:
            out.append(rule)
        elif _is_per_turn(rule) and all(s.activated_turn < current_turn for s in answered):
            out.append(rule)
    return out


def pending_start_of_battle_choices(rules: Sequence[Rule], states: Sequence[ArmyState]) -> list[ChoiceRule]:
    out: list[ChoiceRule] = []
    for rule in _choice_rules(rules):
        if not _is_start_of_battle(rule):
            continue
        if find_choice_value(states, rule.choice.id) is None:
            out.append(rule)
    return out
