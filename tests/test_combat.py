import random
from battlecalc.engine.combat_runtime import calculate_combat_modifiers, resolve_attack, visible_combat_rules
from battlecalc.engine.loader import RuleAdapter
from battlecalc.engine.models import CombatOptions, ModelProfile, WeaponProfile
from battlecalc.engine.schema_models import FeelNoPain

def passive(id, *fx, when=None):
    return RuleAdapter.validate_python({"id": id, "name": id, "kind": "passive",
                                        "when": when or {"t": "true"}, "then": [{"t": "do", "fx": list(fx)}]})

def pending_choice(id, trigger=None, when=None):
    raw = {"id": id, "name": id, "kind": "choice", "when": when or {"t": "true"},
           "choice": {"id": f"{id}-pick", "prompt": "?", "options": [{"v": "a", "label": "A"}]}}
    if trigger:
        raw["trigger"] = trigger
    return RuleAdapter.validate_python(raw)

ONE_MODEL = CombatOptions(models_firing=1)

def test_single_model_volley(dice, marines, boyz, bolt_rifle):
    res = resolve_attack(marines, boyz, bolt_rifle, dice(4, 2, 5, 3), options=ONE_MODEL)
    assert res.hits.threshold == 3
    assert res.wounds.threshold == 5
    assert res.saves.threshold == 6
    assert res.summary == {
        "attacks": 2, "hits": 1, "wounds": 1, "unsaved": 1, "damage": 1,
        "damage_after_fnp": 1, "damage_applied": 1, "models_destroyed": 1,
    }

def test_damage_modifier_applies_after_roll(dice, boyz, marines):
    shoota = WeaponProfile(name="Shoota", range=18, A="1", WS=5, S=4, AP=0, D="d3")
    rule = passive("big-shoota", {"t": "modWeaponStat", "stat": "D", "add": 1})
    res = resolve_attack(boyz, marines, shoota, dice(6, 6, 1, 2), options=ONE_MODEL, attacker_rules=[rule])
    assert res.summary["damage"] == 3
    # excess over the model's 2 wounds is lost
    assert res.summary["damage_applied"] == 2
    assert res.summary["models_destroyed"] == 1

def test_hit_modifier_clamps_at_two(dice, marines, boyz, bolt_rifle):
    rules = [passive("a", {"t": "modHit", "add": 2}), passive("b", {"t": "modHit", "add": 1})]
    res = resolve_attack(marines, boyz, bolt_rifle, dice(2, 2, 1, 1), options=ONE_MODEL, attacker_rules=rules)
    assert res.hits.threshold == 2
    assert res.summary["hits"] == 2
    assert res.summary["wounds"] == 0

def test_offensive_rule_on_defender_side_does_nothing(marines, boyz, bolt_rifle):
    mods = calculate_combat_modifiers(marines, boyz, bolt_rifle,
                                      defender_rules=[passive("a", {"t": "modHit", "add": 1})])
    assert mods.hit == 0
    assert len(mods.defender.modifiers) == 0

def test_hit_against_modifier_from_defender(marines, boyz, bolt_rifle):
    mods = calculate_combat_modifiers(marines, boyz, bolt_rifle,
                                      defender_rules=[passive("stealth", {"t": "modHitAgainst", "add": -1})])
    assert mods.hit == -1

def test_invulnerable_is_best_of_profile_and_rules(marines, boyz, bolt_rifle):
    shielded = boyz.model_copy(update={"models": [ModelProfile(T=5, SV=5, INV=5)]})
    kff = passive("kff", {"t": "setInvuln", "n": 4})
    assert calculate_combat_modifiers(marines, shielded, bolt_rifle, defender_rules=[kff]).invuln == 4
    assert calculate_combat_modifiers(marines, shielded, bolt_rifle).invuln == 5
    worse = passive("worse", {"t": "setInvuln", "n": 6})
    assert calculate_combat_modifiers(marines, shielded, bolt_rifle, defender_rules=[worse]).invuln == 5

def test_feel_no_pain_sources(marines, boyz, bolt_rifle):
    tough = boyz.model_copy(update={"abilities": [FeelNoPain(threshold=5)],
                                    "models": [ModelProfile(T=5, SV=5, FNP=6)]})
    assert calculate_combat_modifiers(marines, tough, bolt_rifle).fnp == 5
    rule = passive("painboy", {"t": "setFNP", "n": 4})
    assert calculate_combat_modifiers(marines, tough, bolt_rifle, defender_rules=[rule]).fnp == 4
    assert calculate_combat_modifiers(marines, boyz, bolt_rifle).fnp is None

def test_heavy_needs_stationary_ranged(marines, boyz, bolt_rifle):
    heavy = bolt_rifle.model_copy(update={"keywords": ["Heavy"]})
    still = CombatOptions(unit_remained_stationary=True)
    assert calculate_combat_modifiers(marines, boyz, heavy, options=still).hit == 1
    assert calculate_combat_modifiers(marines, boyz, heavy).hit == 0

def test_lance_needs_charge(marines, boyz, choppa):
    lance = choppa.model_copy(update={"keywords": ["Lance"]})
    charged = CombatOptions(unit_has_charged=True)
    assert calculate_combat_modifiers(marines, boyz, lance, options=charged).wound == 1
    assert calculate_combat_modifiers(marines, boyz, lance).wound == 0

def test_twin_linked_and_reroll_grants(marines, boyz, bolt_rifle):
    twin = bolt_rifle.model_copy(update={"keywords": ["Twin-linked"]})
    assert calculate_combat_modifiers(marines, boyz, twin).wound_reroll == "failed"
    rule = passive("oath", {"t": "reroll", "phase": "wound", "kind": "all"},
                   {"t": "reroll", "phase": "hit", "kind": "ones"})
    mods = calculate_combat_modifiers(marines, boyz, twin, attacker_rules=[rule])
    assert mods.wound_reroll == "all"
    assert mods.hit_reroll == "ones"
    assert mods.damage_reroll is None

def test_anti_lowers_critical_wound(marines, boyz, bolt_rifle):
    anti = bolt_rifle.model_copy(update={"keywords": ["Anti-Infantry 4+"]})
    assert calculate_combat_modifiers(marines, boyz, anti).crit_wound == 4
    vehicle = boyz.model_copy(update={"categories": ["Vehicle"]})
    assert calculate_combat_modifiers(marines, vehicle, anti).crit_wound == 6

def test_weapon_stat_changes(marines, boyz, bolt_rifle):
    rule = passive("r", {"t": "modWeaponStat", "stat": "S", "add": 1},
                   {"t": "modWeaponStat", "stat": "AP", "add": -1})
    mods = calculate_combat_modifiers(marines, boyz, bolt_rifle, attacker_rules=[rule])
    assert (mods.strength, mods.ap) == (5, -2)
    # AP never turns positive
    better = passive("r", {"t": "modWeaponStat", "stat": "AP", "add": 3})
    assert calculate_combat_modifiers(marines, boyz, bolt_rifle, attacker_rules=[better]).ap == 0

def test_extra_attacks_ignore_attack_modifiers(marines, boyz, choppa):
    rule = passive("r", {"t": "modWeaponStat", "stat": "A", "add": 1})
    assert calculate_combat_modifiers(marines, boyz, choppa, attacker_rules=[rule]).attacks_mod == 1
    extra = choppa.model_copy(update={"keywords": ["Extra Attacks"]})
    assert calculate_combat_modifiers(marines, boyz, extra, attacker_rules=[rule]).attacks_mod == 0

def test_rapid_fire_within_half_range(dice, marines, boyz, bolt_rifle):
    rf = bolt_rifle.model_copy(update={"keywords": ["Rapid Fire 1"]})
    close = CombatOptions(models_firing=2, within_half_range=True)
    assert resolve_attack(marines, boyz, rf, dice(*[1] * 6), options=close).summary["attacks"] == 6
    far = CombatOptions(models_firing=2)
    assert resolve_attack(marines, boyz, rf, dice(*[1] * 4), options=far).summary["attacks"] == 4

def test_lethal_hits_wound_automatically(dice, marines, boyz, bolt_rifle):
    lethal = bolt_rifle.model_copy(update={"keywords": ["Lethal Hits"]})
    res = resolve_attack(marines, boyz, lethal, dice(6, 4, 2, 2), options=ONE_MODEL)
    assert res.summary["hits"] == 2
    assert res.summary["wounds"] == 1
    assert res.summary["unsaved"] == 1
    assert len(res.wounds.rolls) == 1

def test_devastating_wounds_skip_saves(dice, marines, boyz, bolt_rifle):
    dev = bolt_rifle.model_copy(update={"keywords": ["Devastating Wounds"]})
    res = resolve_attack(marines, boyz, dev, dice(3, 3, 6, 5, 6), options=ONE_MODEL)
    assert res.summary["wounds"] == 2
    assert res.saves.successes == 1
    assert res.summary["unsaved"] == 1
    assert res.summary["models_destroyed"] == 1

def test_granted_ability_shows_in_result(dice, marines, boyz, bolt_rifle):
    rule = passive("tactical-precision", {"t": "addWeaponAbility", "ability": {"t": "flag", "id": "lethalHits"}})
    res = resolve_attack(marines, boyz, bolt_rifle, dice(1, 1), options=ONE_MODEL, attacker_rules=[rule])
    assert res.keyword_flags == ["lethal_hits"]
    assert res.added_keywords == ["Lethal Hits"]
    assert [r.id for r in res.applied_rules] == ["tactical-precision"]
    assert [m.stat for m in res.ledger_entries] == ["weaponAbility:lethalHits"]

def test_visible_combat_rules(marines, boyz, bolt_rifle):
    applied = passive("applied", {"t": "modHit", "add": 1})
    skipped = passive("skipped", {"t": "modHit", "add": 1}, when={"t": "weaponType", "any": ["melee"]})
    att_pending = pending_choice("att-pending")
    reactive = pending_choice("reactive", trigger={"t": "reactive"})
    hidden = pending_choice("hidden")
    defender_leaf = pending_choice("defender-leaf", when={"t": "combatRole", "is": "defender"})
    mods = calculate_combat_modifiers(
        marines, boyz, bolt_rifle,
        attacker_rules=[applied, skipped, att_pending],
        defender_rules=[reactive, hidden, defender_leaf],
    )
    assert [r.id for r in visible_combat_rules(mods)] == ["applied", "att-pending", "reactive", "defender-leaf"]

def test_fixed_seed_is_repeatable(marines, boyz, bolt_rifle):
    first = resolve_attack(marines, boyz, bolt_rifle, random.Random(42))
    second = resolve_attack(marines, boyz, bolt_rifle, random.Random(42))
    assert first.summary == second.summary
    assert [r.value for r in first.hits.rolls] == [r.value for r in second.hits.rolls]

def test_armour_beats_worse_invulnerable(dice, marines, boyz, bolt_rifle):
    armoured = boyz.model_copy(update={"models": [ModelProfile(T=5, SV=3, INV=5)]})
    res = resolve_attack(marines, armoured, bolt_rifle, dice(4, 4, 5, 1, 6), options=ONE_MODEL)
    assert res.saves.threshold == 4
    assert res.saves.notes[0] == "armour save"
    assert res.summary["unsaved"] == 0

def test_hit_reroll_reaches_the_dice(dice, marines, boyz, bolt_rifle):
    rule = passive("reroll", {"t": "reroll", "phase": "hit", "kind": "failed"})
    res = resolve_attack(marines, boyz, bolt_rifle, dice(1, 5, 2, 2, 1), options=ONE_MODEL, attacker_rules=[rule])
    assert res.hits.reroll_kind == "failed"
    first = res.hits.rolls[0]
    assert (first.value, first.is_reroll, first.original_value) == (5, True, 1)
    assert res.summary["hits"] == 1
    assert res.summary["wounds"] == 0
