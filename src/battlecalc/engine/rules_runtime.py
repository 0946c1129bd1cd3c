from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Literal, Optional, Sequence

from .army_states import find_choice_value, states_for_army
from .conditions_runtime import evaluate_when
from .context import CombatContext
from .effects_runtime import evaluate_block
from .schema_models import ArmyState, ChoiceRule, PassiveRule, ReminderRule, Rule

RuleStatus = Literal[
    "not-applicable", "passive-applied", "choice-pending", "choice-applied", "reminder-applicable"
]
_APPLIED = {"passive-applied", "choice-applied", "reminder-applicable"}


@dataclass
class RuleResolution:
    rule: Rule
    status: RuleStatus
    chosen_value: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.status in _APPLIED

    @property
    def pending(self) -> bool:
        return self.status == "choice-pending"


def resolve_choice_value(rule: ChoiceRule, ctx: CombatContext) -> Optional[str]:
    """Army-scoped choices read recorded army states first, then supplied inputs."""
    if rule.scope == "army":
        recorded = find_choice_value(ctx.army_states, rule.choice.id)
        if recorded:
            return recorded
    value = ctx.options.user_inputs.get(rule.choice.id)
    return value or None


def evaluate_rule(rule: Rule, ctx: CombatContext) -> RuleResolution:
    if not evaluate_when(rule.when, ctx):
        ctx.log("Rule", f"{rule.id}: condition not met ({ctx.role})")
        return RuleResolution(rule, "not-applicable")

    if isinstance(rule, ReminderRule):
        ctx.log("Rule", f"{rule.id}: reminder applicable")
        return RuleResolution(rule, "reminder-applicable")

    if isinstance(rule, PassiveRule):
        for block in rule.then:
            evaluate_block(block, ctx, rule.id)
        ctx.log("Rule", f"{rule.id}: passive applied ({ctx.role})")
        return RuleResolution(rule, "passive-applied")

    # choice
    value = resolve_choice_value(rule, ctx)
    option = rule.choice.option_for(value)
    if option is None:
        if value is not None:
            ctx.log("Rule", f"{rule.id}: value '{value}' matches no option of '{rule.choice.id}'")
        else:
            ctx.log("Rule", f"{rule.id}: awaiting choice '{rule.choice.id}'")
        return RuleResolution(rule, "choice-pending", value)
    for block in option.then:
        evaluate_block(block, ctx, rule.id)
    ctx.log("Rule", f"{rule.id}: choice '{rule.choice.id}' = {option.v} applied ({ctx.role})")
    return RuleResolution(rule, "choice-applied", option.v)


def evaluate_all_rules(rules: Iterable[Rule], ctx: CombatContext) -> list[RuleResolution]:
    return [evaluate_rule(r, ctx) for r in rules]


def applied_rules(resolutions: Iterable[RuleResolution]) -> list[Rule]:
    return [r.rule for r in resolutions if r.applied]


# -------- display --------

def _title(camel: str) -> str:
    spaced = re.sub(r"([A-Z])", r" \1", camel).strip()
    return spaced[:1].upper() + spaced[1:]


def format_ability(ability: Any) -> str:
    t = ability.t
    if t == "flag":
        if ability.id == "twinLinked":
            return "Twin-linked"
        return _title(ability.id)
    if t == "scouts":
        return f'Scouts {ability.distance}"'
    if t == "feelNoPain":
        return f"Feel No Pain {ability.threshold}+"
    if t == "deadlyDemise":
        return f"Deadly Demise {ability.x}"
    if t == "rapidFire":
        return f"Rapid Fire {ability.x}"
    if t == "sustainedHits":
        return f"Sustained Hits {ability.x}"
    if t == "melta":
        return f"Melta {ability.x}"
    if t == "anti":
        return f"Anti-{ability.keyword} {ability.threshold}+"
    return _title(t)


def added_keywords(ctx: CombatContext) -> list[str]:
    """Display strings for every keyword or ability granted through the ledger."""
    out: list[str] = []
    ledger = ctx.modifiers
    for stat in ledger.stats():
        if stat.startswith("keyword:"):
            name = stat.split(":", 1)[1]
            for m in ledger.all_entries(stat):
                out.append(f"{name} {m.value:g}" if m.value > 0 else name)
        elif stat.startswith(("weaponAbility:", "unitAbility:")):
            if not ledger.has(stat):
                continue
            details = ctx.ability_details.get(stat)
            if details:
                out.extend(format_ability(a) for a in details)
            else:
                out.append(_title(stat.split(":", 1)[1]))
    return out


# -------- reminders --------

TurnContext = Literal["own", "opponent", "both"]


def _turn_matches(rule_turn: str, turn_context: TurnContext) -> bool:
    return turn_context == "both" or rule_turn == "both" or rule_turn == turn_context


def reminders_for(rules: Sequence[Rule], phase: str, turn_context: TurnContext,
                  states: Sequence[ArmyState] = (), army_id: Optional[str] = None,
                  current_turn: Optional[int] = None) -> list[ReminderRule]:
    """
    Reminder rules relevant to the given phase and turn, deduplicated by id.
    A reminder whose condition names army states is only shown while one of them is live.
    """
    if army_id:
        states = states_for_army(states, army_id, current_turn, phase)
    live = {s.state for s in states}
    seen: set[str] = set()
    out: list[ReminderRule] = []
    for r in rules:
        if not isinstance(r, ReminderRule) or r.id in seen:
            continue
        if not r.trigger.includes_phase(phase):
            continue
        if not _turn_matches(r.trigger.turn, turn_context):
            continue
        required = _required_states(r.when)
        if required and not (required & live):
            continue
        seen.add(r.id)
        out.append(r)
    return out


def reactive_rules_for(rules: Sequence[Rule], phase: str) -> list[Rule]:
    """Reactive rules a player may trigger during the given phase, deduplicated by id."""
    seen: set[str] = set()
    out: list[Rule] = []
    for r in rules:
        if r.trigger.t != "reactive" or r.id in seen or not r.trigger.includes_phase(phase):
            continue
        seen.add(r.id)
        out.append(r)
    return out


def _required_states(node: Any) -> set[str]:
    t = getattr(node, "t", None)
    if t == "armyState":
        return set(node.is_)
    if t in ("all", "any"):
        out: set[str] = set()
        for x in node.xs:
            out |= _required_states(x)
        return out
    return set()


def walk_when(node: Any) -> List[Any]:
    """Flatten a condition tree into its nodes (pre-order)."""
    out = [node]
    t = getattr(node, "t", None)
    if t in ("all", "any"):
        for x in node.xs:
            out.extend(walk_when(x))
    elif t == "not":
        out.extend(walk_when(node.x))
    return out
