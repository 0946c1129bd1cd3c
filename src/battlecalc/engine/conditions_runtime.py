from __future__ import annotations
from typing import Any

from .context import CombatContext
from .schema_models import ability_key
from .weapon_keywords import effective_keywords


def _lower(xs: list[str]) -> set[str]:
    return {x.lower() for x in xs}


def _unit_status(status: str, ctx: CombatContext) -> bool:
    opts = ctx.options
    if status == "charged":
        return opts.unit_has_charged
    if status == "moved":
        return not opts.unit_remained_stationary
    if status == "stationary":
        return opts.unit_remained_stationary
    if status == "withinHalfRange":
        return opts.within_half_range
    return False


def _weapon_has_ability(ability: Any, ctx: CombatContext) -> bool:
    kw = effective_keywords(ctx.weapon, ctx.modifiers, ctx.ability_details)
    if ability.t == "flag":
        return kw.has_flag(ability.id)
    if ability.t == "rapidFire":
        return kw.rapid_fire >= ability.x
    if ability.t == "sustainedHits":
        return kw.sustained_hits >= ability.x
    if ability.t == "melta":
        return kw.melta >= ability.x
    if ability.t == "anti":
        return any(k.lower() == ability.keyword.lower() for k, _ in kw.anti)
    return False


def _unit_has_ability(ability: Any, ctx: CombatContext) -> bool:
    key = ability_key(ability)
    if ctx.modifiers.has(f"unitAbility:{key}"):
        return True
    return any(ability_key(a) == key for a in ctx.own_unit.abilities)


def _is_targeted_unit(ctx: CombatContext) -> bool:
    target_id = ctx.opposing_unit.id
    return any(s.target_unit_id == target_id for s in ctx.army_states)


def evaluate_when(node: Any, ctx: CombatContext) -> bool:
    """
    Evaluate a condition tree against one role's view of the combat.
    Missing data means "not satisfied"; unknown node kinds evaluate to False.
    """
    t = getattr(node, "t", None)

    if t == "true":
        return True
    if t == "false":
        return False
    if t == "all":
        return all(evaluate_when(x, ctx) for x in node.xs)
    if t == "any":
        return any(evaluate_when(x, ctx) for x in node.xs)
    if t == "not":
        return not evaluate_when(node.x, ctx)

    if t == "weaponType":
        return ctx.weapon.weapon_type in node.any
    if t == "weaponName":
        return (ctx.weapon.name or "").strip().lower() in _lower(node.any)
    if t == "targetCategory":
        return bool(_lower(node.any) & _lower(ctx.defender.categories))
    if t == "unitStatus":
        return any(_unit_status(s, ctx) for s in node.has)

    # role-aware leaves: read the evaluated side only
    if t == "armyState":
        own_army = ctx.own_unit.army_id
        wanted = set(node.is_)
        return any(s.army_id == own_army and s.state in wanted for s in ctx.army_states)
    if t == "isLeading":
        unit = ctx.own_unit
        return unit.leader or unit.is_led
    if t == "beingLed":
        return ctx.own_unit.is_led
    if t == "isAttachedLeader":
        return ctx.own_unit.is_attached_leader
    if t == "isTargetedUnit":
        return _is_targeted_unit(ctx)
    if t == "combatRole":
        return ctx.role == node.is_

    if t == "attackHasKeyword":
        printed = _lower(ctx.weapon.keywords)
        granted = {s.split(":", 1)[1].lower() for s in ctx.modifiers.stats() if s.startswith("keyword:")}
        wanted = _lower(node.any)
        if wanted & granted:
            return True
        return any(p == w or p.startswith(w + " ") for p in printed for w in wanted)
    if t == "weaponHasAbility":
        return _weapon_has_ability(node.ability, ctx)
    if t == "unitHasAbility":
        return _unit_has_ability(node.ability, ctx)
    if t == "userInput":
        return ctx.options.user_inputs.get(node.id) == node.is_

    ctx.log("When", f"Unknown condition kind '{t}'; treated as false")
    return False
