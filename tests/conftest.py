import random
import pytest
from battlecalc.engine.models import ModelProfile, UnitSnapshot, WeaponProfile


class ScriptedRandom(random.Random):
    """random.Random that hands out a fixed sequence of die results."""

    def __init__(self, values):
        super().__init__(0)
        self.values = list(values)

    def randint(self, a, b):
        assert self.values, "ran out of scripted dice"
        v = self.values.pop(0)
        assert a <= v <= b, f"scripted value {v} outside {a}..{b}"
        return v


@pytest.fixture
def dice():
    return lambda *values: ScriptedRandom(values)


@pytest.fixture
def marines():
    return UnitSnapshot(
        id="intercessors", army_id="marines", name="Intercessors",
        categories=["Infantry", "Adeptus Astartes"],
        models=[ModelProfile(T=4, SV=3, W=2) for _ in range(5)],
    )


@pytest.fixture
def boyz():
    return UnitSnapshot(
        id="boyz", army_id="orks", name="Boyz",
        categories=["Infantry", "Orks"],
        models=[ModelProfile(T=5, SV=5, W=1) for _ in range(10)],
    )


@pytest.fixture
def bolt_rifle():
    return WeaponProfile(name="Bolt rifle", range=24, A="2", WS=3, S=4, AP=-1, D="1")


@pytest.fixture
def choppa():
    return WeaponProfile(name="Choppa", range=0, A="3", WS=3, S=4, AP=-1, D="1")
