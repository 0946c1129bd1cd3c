from __future__ import annotations
from typing import Any, Optional

from .conditions_runtime import evaluate_when
from .context import CombatContext
from .schema_models import Modifier, ModifierOperation, ability_key

# intent -> the only role allowed to write it; neutral effects write in either role
_ROLE_FOR_INTENT = {"offensive": "attacker", "defensive": "defender"}


def _write(ctx: CombatContext, rule_id: str, stat: str, value: float,
           operation: ModifierOperation = "add") -> None:
    ctx.modifiers.add(Modifier(source=rule_id, stat=stat, value=value, operation=operation))
    ctx.log("Fx", f"{rule_id}: {stat} {operation} {value} ({ctx.role})")


def _gate(fx: Any, ctx: CombatContext, rule_id: str) -> Optional[str]:
    """Return a reason when the effect must not write, else None."""
    required = _ROLE_FOR_INTENT.get(fx.intent)
    if required is not None and ctx.role != required:
        return f"{fx.intent} effect skipped in {ctx.role} view"
    applies_to = getattr(fx, "appliesTo", "all")
    if applies_to == "leader" and not ctx.own_unit.leader:
        return "appliesTo=leader but unit is not a leader"
    if applies_to == "bodyguard" and ctx.own_unit.leader:
        return "appliesTo=bodyguard but unit is a leader"
    for cond in getattr(fx, "conditions", []) or []:
        if not evaluate_when(cond, ctx):
            return "nested condition not met"
    return None


def apply_fx(fx: Any, ctx: CombatContext, rule_id: str) -> bool:
    """Write one effect into the context's ledger. Returns True when something was written."""
    t = getattr(fx, "t", None)
    reason = _gate(fx, ctx, rule_id)
    if reason:
        ctx.log("Fx", f"{rule_id}: {t} {reason}")
        return False

    if t in ("modHit", "modHitAgainst"):
        _write(ctx, rule_id, "hit", fx.add)
    elif t in ("modWound", "modWoundAgainst"):
        _write(ctx, rule_id, "wound", fx.add)
    elif t in ("modWeaponStat", "modDefensiveStat"):
        _write(ctx, rule_id, fx.stat, fx.add)
    elif t == "setDefensiveStat":
        _write(ctx, rule_id, fx.stat, fx.n, "set")
    elif t == "modMove":
        _write(ctx, rule_id, "M", fx.add)
    elif t in ("addWeaponAbility", "addUnitAbility"):
        prefix = "weaponAbility" if t == "addWeaponAbility" else "unitAbility"
        stat = f"{prefix}:{ability_key(fx.ability)}"
        _write(ctx, rule_id, stat, 1, "set")
        ctx.ability_details.setdefault(stat, []).append(fx.ability)
    elif t == "addKeyword":
        _write(ctx, rule_id, f"keyword:{fx.keyword}", fx.value, "set")
    elif t == "setInvuln":
        _write(ctx, rule_id, "INV", fx.n, "set")
    elif t == "setFNP":
        _write(ctx, rule_id, "FNP", fx.n, "set")
    elif t == "setCriticalHit":
        _write(ctx, rule_id, "critHit", fx.n, "set")
    elif t == "setCriticalWound":
        _write(ctx, rule_id, "critWound", fx.n, "set")
    elif t == "reroll":
        _write(ctx, rule_id, f"reroll:{fx.phase}:{fx.kind}", 1, "set")
    else:
        ctx.log("Fx", f"{rule_id}: unknown effect kind '{t}'; ignored")
        return False
    return True


def evaluate_block(block: Any, ctx: CombatContext, rule_id: str) -> None:
    if block.t == "do":
        for fx in block.fx:
            apply_fx(fx, ctx, rule_id)
    elif block.t == "if":
        if evaluate_when(block.when, ctx):
            for nested in block.then:
                evaluate_block(nested, ctx, rule_id)
        else:
            ctx.log("Fx", f"{rule_id}: if-block condition not met")
