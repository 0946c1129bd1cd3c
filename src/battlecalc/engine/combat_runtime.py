from __future__ import annotations
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .context import CombatContext, build_combat_context
from .dice import reroll_kind
from .dice_runtime import (
    PhaseLog, allocate_damage, clamp_threshold, resolve_attack_count, resolve_damage,
    resolve_feel_no_pain, resolve_hits, resolve_saves, resolve_wounds, save_threshold, wound_threshold,
)
from .models import CombatOptions, GameInfo, UnitSnapshot, WeaponProfile
from .rules_runtime import RuleResolution, added_keywords, evaluate_all_rules, walk_when
from .schema_models import ArmyState, Modifier, Rule
from .trace import TraceSession, note
from .weapon_keywords import WeaponKeywords, effective_keywords


@dataclass
class CombatModifiers:
    """Both role views after rule evaluation, plus the merged numbers the dice pipeline reads."""
    attacker: CombatContext
    defender: CombatContext
    attacker_resolutions: List[RuleResolution]
    defender_resolutions: List[RuleResolution]
    keywords: WeaponKeywords
    hit: int
    wound: int
    strength: int
    ap: int
    attacks_mod: int
    damage_mod: int
    toughness: int
    save: int
    invuln: Optional[int]
    fnp: Optional[int]
    crit_hit: int
    crit_wound: int
    hit_reroll: Optional[str]
    wound_reroll: Optional[str]
    damage_reroll: Optional[str]

    def applied_rules(self) -> List[Rule]:
        return [r.rule for r in (*self.attacker_resolutions, *self.defender_resolutions) if r.applied]

    def ledger_entries(self) -> List[Modifier]:
        return self.attacker.modifiers.entries() + self.defender.modifiers.entries()


def _best(*values: Optional[int]) -> Optional[int]:
    present = [int(v) for v in values if v is not None]
    return min(present) if present else None


def calculate_combat_modifiers(
    attacker: UnitSnapshot,
    defender: UnitSnapshot,
    weapon: WeaponProfile,
    *,
    game: Optional[GameInfo] = None,
    options: Optional[CombatOptions] = None,
    attacker_rules: Sequence[Rule] = (),
    defender_rules: Sequence[Rule] = (),
    army_states: Sequence[ArmyState] = (),
    trace: Optional[TraceSession] = None,
) -> CombatModifiers:
    game = game or GameInfo()
    options = options or CombatOptions()
    att_ctx = build_combat_context(attacker, defender, weapon, game, options, "attacker", army_states, trace)
    def_ctx = build_combat_context(attacker, defender, weapon, game, options, "defender", army_states, trace)
    att_res = evaluate_all_rules(attacker_rules, att_ctx)
    def_res = evaluate_all_rules(defender_rules, def_ctx)

    a, d = att_ctx.modifiers, def_ctx.modifiers
    kw = effective_keywords(weapon, a, att_ctx.ability_details)
    profile = defender.lead_profile

    hit = int(a.net_value("hit") + d.net_value("hit"))
    if kw.heavy and options.unit_remained_stationary and weapon.weapon_type == "ranged":
        hit += 1
    wound = int(a.net_value("wound") + d.net_value("wound"))
    if kw.lance and options.unit_has_charged:
        wound += 1

    unit_fnp = [ab.threshold for ab in defender.abilities if ab.t == "feelNoPain"]
    unit_fnp += [ab.threshold for ab in def_ctx.ability_details.get("unitAbility:feelNoPain", [])]

    crit_wound = int(a.apply("critWound", 6))
    anti = kw.anti_threshold_for(defender.categories)
    if anti is not None:
        crit_wound = min(crit_wound, anti)

    return CombatModifiers(
        attacker=att_ctx,
        defender=def_ctx,
        attacker_resolutions=att_res,
        defender_resolutions=def_res,
        keywords=kw,
        hit=hit,
        wound=wound,
        strength=int(a.apply("S", weapon.S)),
        ap=min(0, int(a.apply("AP", weapon.AP))),
        attacks_mod=0 if kw.extra_attacks else int(a.net_value("A")),
        damage_mod=int(a.net_value("D")),
        toughness=max(1, int(d.apply("T", profile.T))),
        save=int(d.apply("SV", profile.SV)),
        invuln=_best(profile.INV, d.apply("INV", 7) if d.all_entries("INV") else None),
        fnp=_best(profile.FNP, d.apply("FNP", 7) if d.all_entries("FNP") else None, *unit_fnp),
        crit_hit=int(a.apply("critHit", 6)),
        crit_wound=crit_wound,
        hit_reroll=reroll_kind(a, "hit"),
        wound_reroll=reroll_kind(a, "wound", *(("failed",) if kw.twin_linked else ())),
        damage_reroll=reroll_kind(a, "damage"),
    )


# -------- rule visibility --------

def _has_defender_role_leaf(rule: Rule) -> bool:
    return any(getattr(n, "t", None) == "combatRole" and n.is_ == "defender" for n in walk_when(rule.when))


def visible_combat_rules(mods: CombatModifiers) -> List[Rule]:
    """
    Rules to surface for this combat: applied attacker rules, attacker choices still
    awaiting a value, and defender choices awaiting a value that are reactive or
    explicitly defender-scoped.
    """
    out = [r.rule for r in mods.attacker_resolutions if r.applied]
    out += [r.rule for r in mods.attacker_resolutions if r.pending]
    for r in mods.defender_resolutions:
        if not r.pending:
            continue
        if r.rule.trigger.t == "reactive" or _has_defender_role_leaf(r.rule):
            out.append(r.rule)
    return out


# -------- full sequence --------

@dataclass
class CombatResult:
    attacks: PhaseLog
    hits: PhaseLog
    wounds: PhaseLog
    saves: PhaseLog
    damage: PhaseLog
    fnp: PhaseLog
    summary: Dict[str, int]
    modified_weapon: WeaponProfile
    keyword_flags: List[str]
    applied_rules: List[Rule]
    visible_rules: List[Rule]
    added_keywords: List[str]
    ledger_entries: List[Modifier]
    trace_lines: List[str] = field(default_factory=list)

    def phases(self) -> List[PhaseLog]:
        return [self.attacks, self.hits, self.wounds, self.saves, self.damage, self.fnp]


def resolve_attack(
    attacker: UnitSnapshot,
    defender: UnitSnapshot,
    weapon: WeaponProfile,
    rng: random.Random,
    *,
    game: Optional[GameInfo] = None,
    options: Optional[CombatOptions] = None,
    attacker_rules: Sequence[Rule] = (),
    defender_rules: Sequence[Rule] = (),
    army_states: Sequence[ArmyState] = (),
    trace: Optional[TraceSession] = None,
) -> CombatResult:
    options = options or CombatOptions()
    mods = calculate_combat_modifiers(
        attacker, defender, weapon, game=game, options=options,
        attacker_rules=attacker_rules, defender_rules=defender_rules,
        army_states=army_states, trace=trace,
    )
    kw = mods.keywords

    models = options.models_firing if options.models_firing is not None else attacker.model_count
    rapid_fire = kw.rapid_fire if options.within_half_range else 0
    blast = options.blast_bonus_attacks if kw.blast else 0
    attacks, attacks_log = resolve_attack_count(rng, weapon.A, models, mods.attacks_mod, rapid_fire, blast, trace)

    hit_t = clamp_threshold(weapon.WS, mods.hit)
    hits = resolve_hits(rng, attacks, hit_t, mods.crit_hit, mods.hit_reroll,
                        torrent=kw.torrent, sustained_hits=kw.sustained_hits,
                        lethal_hits=kw.lethal_hits, trace=trace)

    wound_t = clamp_threshold(wound_threshold(mods.strength, mods.toughness), mods.wound)
    wounds = resolve_wounds(rng, hits.hits, hits.auto_wounds, wound_t, mods.crit_wound, mods.wound_reroll,
                            devastating_wounds=kw.devastating_wounds, trace=trace)

    save_t, used_inv = save_threshold(mods.save, mods.ap, mods.invuln)
    unsaved, saves_log = resolve_saves(rng, wounds.wounds, save_t, used_inv, trace)

    melta = kw.melta if options.within_half_range else 0
    instances = unsaved + wounds.mortal_like
    damages, damage_log = resolve_damage(rng, instances, weapon.D, mods.damage_mod, melta, mods.damage_reroll, trace)
    remaining, fnp_log = resolve_feel_no_pain(rng, damages, mods.fnp, trace)

    profile = defender.lead_profile
    wounds_per_model = max(1, int(mods.defender.modifiers.apply("W", profile.W)))
    destroyed, applied = allocate_damage(remaining, wounds_per_model, defender.model_count)

    modified_weapon = weapon.model_copy(update={"S": mods.strength, "AP": mods.ap})
    summary = {
        "attacks": attacks,
        "hits": hits.log.successes + kw.sustained_hits * hits.log.criticals,
        "wounds": wounds.log.successes,
        "unsaved": instances,
        "damage": sum(damages),
        "damage_after_fnp": sum(remaining),
        "damage_applied": applied,
        "models_destroyed": destroyed,
    }
    note(trace, "Result", ", ".join(f"{k}={v}" for k, v in summary.items()))
    return CombatResult(
        attacks=attacks_log,
        hits=hits.log,
        wounds=wounds.log,
        saves=saves_log,
        damage=damage_log,
        fnp=fnp_log,
        summary=summary,
        modified_weapon=modified_weapon,
        keyword_flags=kw.active_flags(),
        applied_rules=mods.applied_rules(),
        visible_rules=visible_combat_rules(mods),
        added_keywords=added_keywords(mods.attacker) + added_keywords(mods.defender),
        ledger_entries=mods.ledger_entries(),
        trace_lines=trace.dump() if trace is not None else [],
    )
