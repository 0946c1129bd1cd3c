from battlecalc.engine.army_states import (
    find_choice_value, is_live, pending_command_choices, pending_start_of_battle_choices, states_for_army,
)
from battlecalc.engine.loader import RuleAdapter
from battlecalc.engine.schema_models import ArmyState

def choice_rule(id, choice_id, phase="command", lifetime="turn", limit="none", turn="own", scope="army"):
    return RuleAdapter.validate_python({
        "id": id, "name": id, "kind": "choice", "scope": scope,
        "trigger": {"t": "manual", "phase": phase, "turn": turn, "limit": limit},
        "choice": {"id": choice_id, "prompt": "?", "lifetime": {"t": lifetime},
                   "options": [{"v": "a", "label": "A"}, {"v": "b", "label": "B"}]},
    })

def state(state, turn=1, value=None, army="marines", **kw):
    return ArmyState(id=f"{state}-{turn}", army_id=army, state=state, activated_turn=turn, choice_value=value, **kw)

def test_is_live_without_expiry():
    s = state("waaagh", turn=2)
    assert not is_live(s, 1)
    assert is_live(s, 2)
    assert is_live(s, 5)

def test_is_live_expires_after_phase():
    s = state("waaagh", turn=2, expires_phase="fight", expires_turn=3)
    assert is_live(s, 3, "shooting")
    assert is_live(s, 3, "fight")
    assert not is_live(s, 4, "command")

def test_expiry_defaults_to_activation_turn():
    s = state("smoke", turn=2, expires_phase="shooting")
    assert is_live(s, 2, "command")
    assert not is_live(s, 2, "charge")
    assert not is_live(s, 3, "command")

def test_states_for_army():
    states = [state("a"), state("b", army="orks"), state("c", turn=3)]
    assert [s.state for s in states_for_army(states, "marines")] == ["a", "c"]
    assert [s.state for s in states_for_army(states, "marines", current_turn=2)] == ["a"]
    assert states_for_army(states, None) == []

def test_find_choice_value_prefers_latest_with_value():
    states = [state("doctrine", 1, "devastator"), state("doctrine", 2, "tactical"), state("doctrine", 3)]
    assert find_choice_value(states, "doctrine") == "tactical"
    assert find_choice_value(states, "plague") is None

def test_unanswered_command_choice_is_pending():
    rule = choice_rule("doctrines", "doctrine")
    assert pending_command_choices([rule], [], 1) == [rule]
    # a state with no value does not answer it
    assert pending_command_choices([rule], [state("doctrine", 1)], 1) == [rule]

def test_per_turn_choice_returns_each_turn():
    rule = choice_rule("doctrines", "doctrine")
    answered = [state("doctrine", 1, "a")]
    assert pending_command_choices([rule], answered, 1) == []
    assert pending_command_choices([rule], answered, 2) == [rule]

def test_once_per_battle_choice_stays_answered():
    rule = choice_rule("waaagh", "waaagh-call", limit="once-per-battle")
    answered = [state("waaagh-call", 1, "a")]
    assert pending_command_choices([rule], answered, 3) == []

def test_game_lifetime_choice_stays_answered():
    rule = choice_rule("oath", "oath-target", lifetime="game")
    assert pending_command_choices([rule], [state("oath-target", 1, "a")], 4) == []

def test_command_list_skips_other_phases_and_opponent_turn():
    rules = [choice_rule("x", "x", phase="shooting"), choice_rule("y", "y", turn="opponent")]
    assert pending_command_choices(rules, [], 1) == []

def test_start_of_battle_choices_are_separate():
    plague = choice_rule("nurgles-gift", "plague", phase="start-of-battle", lifetime="game", limit="once-per-battle")
    doctrine = choice_rule("doctrines", "doctrine")
    assert pending_start_of_battle_choices([plague, doctrine], []) == [plague]
    assert pending_command_choices([plague, doctrine], [], 1) == [doctrine]
    assert pending_start_of_battle_choices([plague], [state("plague", 1, "a")]) == []

def test_once_per_battle_choice_only_offered_on_turn_one():
    rule = choice_rule("waaagh", "waaagh-call", limit="once-per-battle")
    assert pending_command_choices([rule], [], 1) == [rule]
    assert pending_command_choices([rule], [], 3) == []

def test_unit_scoped_choice_is_not_a_command_choice():
    rule = choice_rule("target-priority", "priority", scope="unit")
    assert pending_command_choices([rule], [], 1) == []
    assert pending_command_choices([rule], [state("priority", 1, "a")], 2) == []
