from __future__ import annotations
import random
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .dice import DiceRoll, d6, expected_value, is_dice_expr, is_variable, qualifies_for_reroll, roll_d6_test, roll_expr_or
from .trace import TraceSession, note

IMPOSSIBLE = 7


@dataclass
class PhaseLog:
    name: str
    threshold: Optional[int] = None
    rolls: List[DiceRoll] = field(default_factory=list)
    successes: int = 0
    criticals: int = 0
    reroll_kind: Optional[str] = None
    notes: List[str] = field(default_factory=list)


def clamp_threshold(base: int, modifier: int) -> int:
    """Apply a roll modifier to a characteristic threshold: 2+ at best, 6+ at worst, 7 if base > 6."""
    if base > 6:
        return IMPOSSIBLE
    return max(2, min(6, base - modifier))


def wound_threshold(strength: int, toughness: int) -> int:
    if strength >= 2 * toughness:
        return 2
    if strength > toughness:
        return 3
    if strength == toughness:
        return 4
    if strength * 2 <= toughness:
        return 6
    return 5


def save_threshold(sv: int, ap: int, inv: Optional[int]) -> Tuple[int, bool]:
    """
    AP-modified armor vs invulnerable save. AP is zero or negative and never touches
    the invulnerable save. Returns (threshold, used_invulnerable); 7 means no save possible.
    """
    armor = sv - ap
    use_inv = inv is not None and (inv <= armor or armor > 6)
    threshold = inv if use_inv else armor
    if threshold > 6:
        return IMPOSSIBLE, use_inv
    return threshold, use_inv


# -------- attacks --------

def resolve_attack_count(rng: random.Random, attacks_expr: str, models: int, attacks_mod: int,
                         rapid_fire: int, blast_bonus: int,
                         trace: Optional[TraceSession] = None) -> Tuple[int, PhaseLog]:
    log = PhaseLog(name="attacks")
    total = 0
    for _ in range(max(0, models)):
        base = roll_expr_or(rng, attacks_expr, 0, trace=trace, what="attacks")
        if is_variable(attacks_expr):
            log.rolls.append(DiceRoll(value=base))
        per_model = max(0, base + attacks_mod + rapid_fire)
        total += per_model
    if models > 0:
        total += blast_bonus
    total = max(0, total)
    if attacks_mod:
        log.notes.append(f"A modifier {attacks_mod:+d} per model")
    if rapid_fire:
        log.notes.append(f"Rapid Fire +{rapid_fire} per model")
    if blast_bonus and models > 0:
        log.notes.append(f"Blast +{blast_bonus}")
    log.successes = total
    note(trace, "Attacks", f"{models} model(s) x {attacks_expr} -> {total} attacks")
    return total, log


# -------- hits --------

@dataclass
class HitOutcome:
    hits: int  # hits that still need a wound roll
    auto_wounds: int  # lethal hits
    log: PhaseLog


def resolve_hits(rng: random.Random, attacks: int, threshold: int, crit_threshold: int,
                 reroll: Optional[str], *, torrent: bool = False, sustained_hits: int = 0,
                 lethal_hits: bool = False, trace: Optional[TraceSession] = None) -> HitOutcome:
    log = PhaseLog(name="hit", threshold=threshold, reroll_kind=reroll)
    if torrent:
        log.successes = attacks
        log.notes.append("Torrent: hits automatically")
        note(trace, "Hit", f"Torrent: {attacks} automatic hits")
        return HitOutcome(hits=attacks, auto_wounds=0, log=log)

    def success(v: int) -> bool:
        if v == 1:
            return False
        return v >= crit_threshold or v >= threshold

    hits = 0
    auto_wounds = 0
    for _ in range(attacks):
        roll = roll_d6_test(rng, success, reroll, crit_threshold)
        log.rolls.append(roll)
        if not success(roll.value):
            roll.is_critical = False
            continue
        log.successes += 1
        if roll.is_critical:
            log.criticals += 1
            hits += sustained_hits
            if lethal_hits:
                auto_wounds += 1
                continue
        hits += 1
    if sustained_hits and log.criticals:
        log.notes.append(f"Sustained Hits {sustained_hits}: +{sustained_hits * log.criticals} hits")
    if auto_wounds:
        log.notes.append(f"Lethal Hits: {auto_wounds} automatic wounds")
    note(trace, "Hit", f"{attacks} dice at {threshold}+ (crit {crit_threshold}+): "
                       f"{log.successes} hits, {log.criticals} crits")
    return HitOutcome(hits=hits, auto_wounds=auto_wounds, log=log)


# -------- wounds --------

@dataclass
class WoundOutcome:
    wounds: int  # wounds that go to saving throws
    mortal_like: int  # critical wounds that skip saves (devastating wounds)
    log: PhaseLog


def resolve_wounds(rng: random.Random, hits: int, auto_wounds: int, threshold: int,
                   crit_threshold: int, reroll: Optional[str], *, devastating_wounds: bool = False,
                   trace: Optional[TraceSession] = None) -> WoundOutcome:
    log = PhaseLog(name="wound", threshold=threshold, reroll_kind=reroll)

    def success(v: int) -> bool:
        if v == 1:
            return False
        return v >= crit_threshold or v >= threshold

    wounds = auto_wounds
    bypass = 0
    for _ in range(hits):
        roll = roll_d6_test(rng, success, reroll, crit_threshold)
        log.rolls.append(roll)
        if not success(roll.value):
            roll.is_critical = False
            continue
        log.successes += 1
        if roll.is_critical:
            log.criticals += 1
            if devastating_wounds:
                bypass += 1
                continue
        wounds += 1
    log.successes += auto_wounds
    if auto_wounds:
        log.notes.append(f"{auto_wounds} automatic wounds from Lethal Hits")
    if bypass:
        log.notes.append(f"Devastating Wounds: {bypass} wounds skip saves")
    note(trace, "Wound", f"{hits} dice at {threshold}+ (crit {crit_threshold}+): "
                         f"{log.successes} wounds, {log.criticals} crits")
    return WoundOutcome(wounds=wounds, mortal_like=bypass, log=log)


# -------- saves --------

def resolve_saves(rng: random.Random, wounds: int, threshold: int, used_invuln: bool,
                  trace: Optional[TraceSession] = None) -> Tuple[int, PhaseLog]:
    """Returns (unsaved wounds, log)."""
    log = PhaseLog(name="save", threshold=threshold)
    log.notes.append("invulnerable save" if used_invuln else "armour save")
    if threshold >= IMPOSSIBLE:
        log.notes.append("no save possible")
        note(trace, "Save", f"{wounds} wounds, no save possible")
        return wounds, log
    unsaved = 0
    for _ in range(wounds):
        value = d6(rng)
        log.rolls.append(DiceRoll(value=value))
        if value != 1 and value >= threshold:
            log.successes += 1
        else:
            unsaved += 1
    note(trace, "Save", f"{wounds} dice at {threshold}+: {log.successes} saved, {unsaved} unsaved")
    return unsaved, log


# -------- damage --------

def resolve_damage(rng: random.Random, instances: int, damage_expr: str, damage_mod: int,
                   melta_bonus: int, reroll: Optional[str],
                   trace: Optional[TraceSession] = None) -> Tuple[List[int], PhaseLog]:
    """
    Damage per unsaved wound. The expression is evaluated first; the numeric modifier and
    melta bonus are added to the evaluated number, with a floor of 1.
    Roll records hold evaluated values; the returned list holds the final damage.
    """
    log = PhaseLog(name="damage", reroll_kind=reroll)
    variable = is_variable(damage_expr) and is_dice_expr(damage_expr)
    mean = expected_value(damage_expr) if variable else 0.0
    out: List[int] = []
    for _ in range(instances):
        value = roll_expr_or(rng, damage_expr, 1, trace=trace, what="damage")
        original: Optional[int] = None
        if variable and reroll is not None:
            below_mean = value < mean
            if qualifies_for_reroll("ones" if reroll == "ones" else "failed", value, not below_mean):
                original = value
                value = roll_expr_or(rng, damage_expr, 1, trace=trace, what="damage")
        final = max(1, value + damage_mod + melta_bonus)
        out.append(final)
        log.rolls.append(DiceRoll(value=value, is_reroll=original is not None, original_value=original))
    log.successes = sum(out)
    if damage_mod:
        log.notes.append(f"D modifier {damage_mod:+d}")
    if melta_bonus:
        log.notes.append(f"Melta +{melta_bonus}")
    note(trace, "Damage", f"{instances} x {damage_expr} -> {out}")
    return out, log


# -------- feel no pain --------

def resolve_feel_no_pain(rng: random.Random, damages: List[int], fnp: Optional[int],
                         trace: Optional[TraceSession] = None) -> Tuple[List[int], PhaseLog]:
    """
    One roll per point of damage; each roll at or above the threshold negates a point.
    Returns the damage left on each instance.
    """
    log = PhaseLog(name="fnp", threshold=fnp)
    if fnp is None or fnp > 6:
        return list(damages), log
    remaining: List[int] = []
    for dmg in damages:
        kept = dmg
        for _ in range(dmg):
            value = d6(rng)
            log.rolls.append(DiceRoll(value=value))
            if value >= fnp:
                kept -= 1
                log.successes += 1
        remaining.append(kept)
    note(trace, "FNP", f"{sum(damages)} damage at {fnp}+: {log.successes} negated")
    return remaining, log


def allocate_damage(damages: List[int], wounds_per_model: int, models: int) -> Tuple[int, int]:
    """
    Allocate damage instances one model at a time; excess damage from one instance
    is lost. Returns (models destroyed, damage applied).
    """
    destroyed = 0
    applied = 0
    remaining = wounds_per_model
    for dmg in damages:
        if destroyed >= models:
            break
        dealt = min(dmg, remaining)
        applied += dealt
        remaining -= dealt
        if remaining <= 0:
            destroyed += 1
            remaining = wounds_per_model
    return destroyed, applied
