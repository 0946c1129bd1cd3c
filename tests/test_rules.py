import pytest
from battlecalc.engine.context import build_combat_context
from battlecalc.engine.loader import RuleAdapter
from battlecalc.engine.models import CombatOptions, GameInfo
from battlecalc.engine.rules_runtime import (
    added_keywords, applied_rules, evaluate_all_rules, evaluate_rule, format_ability, reactive_rules_for,
    reminders_for,
)
from battlecalc.engine.schema_models import (
    Anti, ArmyState, FeelNoPain, RapidFire, Scouts, UnitFlag, WeaponFlag,
)

def rule(**raw):
    raw.setdefault("name", raw["id"])
    return RuleAdapter.validate_python(raw)

def passive(id, fx, when=None, **kw):
    return rule(id=id, kind="passive", when=when or {"t": "true"}, then=[{"t": "do", "fx": fx}], **kw)

def doctrine(scope="army", **kw):
    return rule(
        id="combat-doctrines", kind="choice", scope=scope,
        trigger={"phase": "command", "turn": "own"},
        choice={"id": "doctrine", "prompt": "Pick", "lifetime": {"t": "turn"}, "options": [
            {"v": "devastator", "label": "Devastator", "then": [{"t": "do", "fx": [{"t": "modHit", "add": 1}]}]},
            {"v": "assault", "label": "Assault"},
        ]}, **kw,
    )

@pytest.fixture
def ctx(marines, boyz, bolt_rifle):
    def make(role="attacker", options=None, states=(), attacker=None):
        return build_combat_context(attacker or marines, boyz, bolt_rifle,
                                    GameInfo(current_turn=2, current_phase="shooting"),
                                    options or CombatOptions(), role, states)
    return make

def test_passive_applied(ctx):
    c = ctx()
    res = evaluate_rule(passive("p", [{"t": "modHit", "add": 1}]), c)
    assert res.status == "passive-applied"
    assert res.applied and not res.pending
    assert c.modifiers.net_value("hit") == 1

def test_condition_not_met_writes_nothing(ctx):
    c = ctx()
    res = evaluate_rule(passive("p", [{"t": "modHit", "add": 1}], when={"t": "weaponType", "any": ["melee"]}), c)
    assert res.status == "not-applicable"
    assert len(c.modifiers) == 0

def test_passive_applied_even_when_effects_gated(ctx, marines):
    leader = marines.model_copy(update={"is_leader": True})
    c = ctx(attacker=leader)
    res = evaluate_rule(passive("p", [{"t": "modHit", "add": 1, "appliesTo": "bodyguard"}]), c)
    assert res.status == "passive-applied"
    assert len(c.modifiers) == 0

def test_choice_pending_without_value(ctx):
    c = ctx()
    res = evaluate_rule(doctrine(), c)
    assert res.status == "choice-pending"
    assert res.pending
    assert len(c.modifiers) == 0

def test_choice_applied_from_user_input(ctx):
    c = ctx(options=CombatOptions(user_inputs={"doctrine": "devastator"}))
    res = evaluate_rule(doctrine(), c)
    assert res.status == "choice-applied"
    assert res.chosen_value == "devastator"
    assert c.modifiers.net_value("hit") == 1

def test_choice_value_matching_no_option_stays_pending(ctx):
    c = ctx(options=CombatOptions(user_inputs={"doctrine": "tactical"}))
    res = evaluate_rule(doctrine(), c)
    assert res.status == "choice-pending"
    assert res.chosen_value == "tactical"

def test_army_choice_prefers_recorded_state(ctx):
    states = [ArmyState(id="s", army_id="marines", state="doctrine", activated_turn=2, choice_value="assault")]
    c = ctx(options=CombatOptions(user_inputs={"doctrine": "devastator"}), states=states)
    res = evaluate_rule(doctrine(), c)
    assert res.chosen_value == "assault"
    assert len(c.modifiers) == 0

def test_unit_choice_ignores_army_states(ctx):
    states = [ArmyState(id="s", army_id="marines", state="doctrine", choice_value="devastator")]
    res = evaluate_rule(doctrine(scope="unit"), ctx(states=states))
    assert res.status == "choice-pending"

def test_reminder_applicable(ctx):
    c = ctx()
    res = evaluate_rule(rule(id="cover", kind="reminder"), c)
    assert res.status == "reminder-applicable"
    assert res.applied
    assert len(c.modifiers) == 0

def test_applied_rules(ctx):
    rules = [passive("a", [{"t": "modHit", "add": 1}]), doctrine(), rule(id="r", kind="reminder")]
    resolutions = evaluate_all_rules(rules, ctx())
    assert [r.id for r in applied_rules(resolutions)] == ["a", "r"]

def test_format_ability():
    assert format_ability(WeaponFlag(id="twinLinked")) == "Twin-linked"
    assert format_ability(WeaponFlag(id="lethalHits")) == "Lethal Hits"
    assert format_ability(Anti(keyword="infantry", threshold=4)) == "Anti-infantry 4+"
    assert format_ability(RapidFire(x=1)) == "Rapid Fire 1"
    assert format_ability(Scouts(distance=6)) == 'Scouts 6"'
    assert format_ability(FeelNoPain(threshold=5)) == "Feel No Pain 5+"
    assert format_ability(UnitFlag(id="deepStrike")) == "Deep Strike"

def test_added_keywords(ctx):
    c = ctx()
    evaluate_rule(passive("p", [
        {"t": "addWeaponAbility", "ability": {"t": "sustainedHits", "x": 1}},
        {"t": "addKeyword", "keyword": "Psychic"},
        {"t": "addKeyword", "keyword": "Hazard", "value": 2},
    ]), c)
    assert added_keywords(c) == ["Sustained Hits 1", "Psychic", "Hazard 2"]

def test_reminders_for_phase_and_turn():
    rules = [
        rule(id="cover", kind="reminder", trigger={"phase": "shooting", "turn": "opponent"}),
        rule(id="cover", kind="reminder", trigger={"phase": "shooting", "turn": "opponent"}),
        rule(id="waaagh", kind="reminder", trigger={"phase": "command", "turn": "own"}),
        passive("p", [{"t": "modHit", "add": 1}]),
    ]
    assert [r.id for r in reminders_for(rules, "shooting", "opponent")] == ["cover"]
    assert reminders_for(rules, "shooting", "own") == []
    assert [r.id for r in reminders_for(rules, "command", "both")] == ["waaagh"]

def test_reminder_gated_by_live_army_state():
    r = rule(id="waaagh-reminder", kind="reminder", when={"t": "armyState", "is": ["waaagh"]})
    states = [ArmyState(id="s", army_id="orks", state="waaagh", activated_turn=2)]
    assert reminders_for([r], "fight", "own") == []
    assert reminders_for([r], "fight", "own", states, army_id="orks", current_turn=2) == [r]
    assert reminders_for([r], "fight", "own", states, army_id="orks", current_turn=1) == []

def test_reactive_rules_for():
    rules = [
        rule(id="aoc", kind="reminder", trigger={"t": "reactive", "phase": ["shooting", "fight"]}),
        passive("p", [{"t": "modHit", "add": 1}]),
    ]
    assert [r.id for r in reactive_rules_for(rules, "fight")] == ["aoc"]
    assert reactive_rules_for(rules, "charge") == []
