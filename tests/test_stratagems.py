from pathlib import Path
import pytest
from battlecalc.engine.loader import load_content
from battlecalc.engine.stratagems import available_stratagems, drawer_entries, round_allows, usable_stratagems

@pytest.fixture(scope="module")
def catalog():
    content_dir = Path(__file__).resolve().parents[1] / "src" / "battlecalc" / "content"
    return load_content(content_dir).stratagem_catalog()

def ids(stratagems):
    return [s.id for s in stratagems]

def test_core_only_without_faction(catalog):
    core = available_stratagems(catalog, None, None)
    assert len(core) == 11
    assert all(s.is_core for s in core)

def test_detachment_alias_and_loose_names(catalog):
    speed = available_stratagems(catalog, "orks", "Kult of Speed")
    assert len(speed) == 17
    assert "dakkastorm" in ids(speed)
    assert "braggin-rights" not in ids(speed)

    hammer = available_stratagems(catalog, "Death Guard", "Mortarions Hammer")
    assert "relentless-grind" in ids(hammer)

def test_faction_mismatch_keeps_core_only(catalog):
    assert len(available_stratagems(catalog, "Orks", "Saga of the Hunter")) == 11

def test_command_phase_own_turn(catalog):
    usable = usable_stratagems(catalog, "Orks", "Green Tide", "command", True)
    assert ids(usable) == ["braggin-rights", "come-on-ladz", "command-reroll", "insane-bravery", "new-orders"]

def test_shooting_on_opponent_turn(catalog):
    usable = ids(usable_stratagems(catalog, "Adeptus Astartes", "Gladius Task Force", "shooting", False))
    assert usable[0] == "armour-of-contempt"
    assert "storm-of-fire" not in usable
    assert "grenade" not in usable
    assert "smokescreen" in usable

def test_move_or_charge(catalog):
    move = ids(usable_stratagems(catalog, "Death Guard", "Mortarion's Hammer", "movement", True))
    assert move == ["blighted-land", "relentless-grind", "command-reroll", "insane-bravery"]
    charge = ids(usable_stratagems(catalog, "Death Guard", "Mortarion's Hammer", "charge", True))
    assert "relentless-grind" in charge
    assert "tank-shock" in charge
    assert "stinking-mire" not in charge

def test_round_restriction(catalog):
    new_orders = next(s for s in catalog if s.id == "new-orders")
    assert not round_allows(new_orders, 1)
    assert round_allows(new_orders, 2)
    assert round_allows(new_orders, None)
    first = ids(usable_stratagems(catalog, None, None, "command", True, battle_round=1))
    assert "new-orders" not in first

def test_drawer_lists_usable_first(catalog):
    pool = available_stratagems(catalog, "Adeptus Astartes", "Gladius Task Force")
    entries = drawer_entries(pool, is_own_turn=True)
    assert len(entries) == len(pool)
    assert ids(e.stratagem for e in entries[:3]) == ["adaptive-strategy", "honour-the-chapter", "storm-of-fire"]
    later = [e for e in entries if not e.is_available_now]
    assert later[0].stratagem.id == "armour-of-contempt"
    assert all(e.is_available_now for e in entries[:len(entries) - len(later)])
