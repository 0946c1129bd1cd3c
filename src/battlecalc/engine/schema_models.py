from __future__ import annotations
import re
from typing import Any, ClassVar, List, Literal, Optional, Union
from typing_extensions import Annotated
from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, model_validator

# Enums
Scope = Literal["weapon", "model", "unit", "detachment", "army"]
Turn = Literal["own", "opponent", "both"]
TriggerType = Literal["automatic", "manual", "reactive"]
Limit = Literal["none", "once-per-turn", "once-per-battle"]
Phase = Literal["start-of-battle", "command", "movement", "shooting", "charge", "fight", "any"]
CombatRole = Literal["attacker", "defender"]
AppliesTo = Literal["all", "leader", "bodyguard"]
Intent = Literal["offensive", "defensive", "neutral"]
ModifierOperation = Literal["add", "subtract", "set", "clamp-min", "clamp-max"]
RerollPhase = Literal["hit", "wound", "damage"]
RerollKind = Literal["ones", "failed", "all"]


class _Node(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


# -----------------------------
# Triggers
# -----------------------------

class Trigger(_Node):
    t: TriggerType = "automatic"
    phase: Union[Phase, List[Phase]] = "any"
    turn: Turn = "both"
    limit: Limit = "none"

    def phases(self) -> list[str]:
        return [self.phase] if isinstance(self.phase, str) else list(self.phase)

    def includes_phase(self, phase: str) -> bool:
        ps = self.phases()
        return phase in ps or "any" in ps


# -----------------------------
# Typed abilities
# -----------------------------

WeaponAbilityFlag = Literal[
    "assault", "blast", "devastatingWounds", "hazardous", "heavy", "ignoresCover",
    "indirectFire", "lethalHits", "pistol", "torrent", "twinLinked", "lance", "extraAttacks",
]
UnitAbilityFlag = Literal["deepStrike", "fightsFirst", "infiltrators", "leader", "loneOperative", "stealth"]


class RapidFire(_Node):
    t: Literal["rapidFire"] = "rapidFire"
    x: int = Field(ge=1)


class SustainedHits(_Node):
    t: Literal["sustainedHits"] = "sustainedHits"
    x: int = Field(ge=1)


class Anti(_Node):
    t: Literal["anti"] = "anti"
    keyword: str
    threshold: int = Field(ge=2, le=6)


class Melta(_Node):
    t: Literal["melta"] = "melta"
    x: int = Field(ge=1)


class WeaponFlag(_Node):
    t: Literal["flag"] = "flag"
    id: WeaponAbilityFlag


WeaponAbility = Annotated[
    Union[RapidFire, SustainedHits, Anti, Melta, WeaponFlag],
    Field(discriminator="t")
]


class DeadlyDemise(_Node):
    t: Literal["deadlyDemise"] = "deadlyDemise"
    x: int = Field(ge=1)


class FeelNoPain(_Node):
    t: Literal["feelNoPain"] = "feelNoPain"
    threshold: int = Field(ge=2, le=6)


class Scouts(_Node):
    t: Literal["scouts"] = "scouts"
    distance: int = Field(ge=1, le=12)


class UnitFlag(_Node):
    t: Literal["flag"] = "flag"
    id: UnitAbilityFlag


UnitAbility = Annotated[
    Union[DeadlyDemise, FeelNoPain, Scouts, UnitFlag],
    Field(discriminator="t")
]


def ability_key(ability: Any) -> str:
    """Ledger suffix for an ability: the flag id for flags, the tag otherwise."""
    return ability.id if ability.t == "flag" else ability.t


# -----------------------------
# Conditions (When AST)
# -----------------------------

class WhenTrue(_Node):
    t: Literal["true"] = "true"


class WhenFalse(_Node):
    t: Literal["false"] = "false"


class WhenAll(_Node):
    t: Literal["all"] = "all"
    xs: List["When"] = Field(min_length=1)


class WhenAny(_Node):
    t: Literal["any"] = "any"
    xs: List["When"] = Field(min_length=1)


class WhenNot(_Node):
    t: Literal["not"] = "not"
    x: "When"


class WhenWeaponType(_Node):
    t: Literal["weaponType"] = "weaponType"
    any: List[Literal["melee", "ranged"]] = Field(min_length=1)


class WhenWeaponName(_Node):
    t: Literal["weaponName"] = "weaponName"
    any: List[str] = Field(min_length=1)


class WhenTargetCategory(_Node):
    t: Literal["targetCategory"] = "targetCategory"
    any: List[str] = Field(min_length=1)


class WhenUnitStatus(_Node):
    t: Literal["unitStatus"] = "unitStatus"
    has: List[Literal["charged", "moved", "stationary", "withinHalfRange"]] = Field(min_length=1)


class WhenArmyState(_Node):
    t: Literal["armyState"] = "armyState"
    is_: List[str] = Field(alias="is", min_length=1)


class WhenIsLeading(_Node):
    t: Literal["isLeading"] = "isLeading"


class WhenBeingLed(_Node):
    t: Literal["beingLed"] = "beingLed"


class WhenIsAttachedLeader(_Node):
    t: Literal["isAttachedLeader"] = "isAttachedLeader"


class WhenCombatRole(_Node):
    t: Literal["combatRole"] = "combatRole"
    is_: CombatRole = Field(alias="is")


class WhenIsTargetedUnit(_Node):
    t: Literal["isTargetedUnit"] = "isTargetedUnit"


class WhenAttackHasKeyword(_Node):
    t: Literal["attackHasKeyword"] = "attackHasKeyword"
    any: List[str] = Field(min_length=1)


class WhenWeaponHasAbility(_Node):
    t: Literal["weaponHasAbility"] = "weaponHasAbility"
    ability: WeaponAbility


class WhenUnitHasAbility(_Node):
    t: Literal["unitHasAbility"] = "unitHasAbility"
    ability: UnitAbility


class WhenUserInput(_Node):
    t: Literal["userInput"] = "userInput"
    id: str
    is_: str = Field(alias="is")


class UnknownWhen(_Node):
    """Any condition kind this engine does not know. Evaluates to False."""
    model_config = ConfigDict(frozen=True, extra="allow")
    t: str


_WHEN_TYPES = (
    WhenTrue, WhenFalse, WhenAll, WhenAny, WhenNot, WhenWeaponType, WhenWeaponName,
    WhenTargetCategory, WhenUnitStatus, WhenArmyState, WhenIsLeading, WhenBeingLed,
    WhenIsAttachedLeader, WhenCombatRole, WhenIsTargetedUnit, WhenAttackHasKeyword,
    WhenWeaponHasAbility, WhenUnitHasAbility, WhenUserInput,
)
_WHEN_TAGS = {cls.model_fields["t"].default for cls in _WHEN_TYPES}


def _node_tag(known: set[str]):
    def _discriminate(v: Any) -> str:
        t = v.get("t") if isinstance(v, dict) else getattr(v, "t", None)
        return t if t in known else "unknown"
    return _discriminate


When = Annotated[
    Union[
        Annotated[WhenTrue, Tag("true")],
        Annotated[WhenFalse, Tag("false")],
        Annotated[WhenAll, Tag("all")],
        Annotated[WhenAny, Tag("any")],
        Annotated[WhenNot, Tag("not")],
        Annotated[WhenWeaponType, Tag("weaponType")],
        Annotated[WhenWeaponName, Tag("weaponName")],
        Annotated[WhenTargetCategory, Tag("targetCategory")],
        Annotated[WhenUnitStatus, Tag("unitStatus")],
        Annotated[WhenArmyState, Tag("armyState")],
        Annotated[WhenIsLeading, Tag("isLeading")],
        Annotated[WhenBeingLed, Tag("beingLed")],
        Annotated[WhenIsAttachedLeader, Tag("isAttachedLeader")],
        Annotated[WhenCombatRole, Tag("combatRole")],
        Annotated[WhenIsTargetedUnit, Tag("isTargetedUnit")],
        Annotated[WhenAttackHasKeyword, Tag("attackHasKeyword")],
        Annotated[WhenWeaponHasAbility, Tag("weaponHasAbility")],
        Annotated[WhenUnitHasAbility, Tag("unitHasAbility")],
        Annotated[WhenUserInput, Tag("userInput")],
        Annotated[UnknownWhen, Tag("unknown")],
    ],
    Discriminator(_node_tag(_WHEN_TAGS))
]

WhenAll.model_rebuild()
WhenAny.model_rebuild()
WhenNot.model_rebuild()


# -----------------------------
# Effects (Fx)
# -----------------------------

class _Fx(_Node):
    # Which combat role may write this effect into the ledger
    intent: ClassVar[Intent] = "neutral"

    appliesTo: AppliesTo = "all"
    conditions: List[When] = Field(default_factory=list)


class FxModHit(_Fx):
    intent: ClassVar[Intent] = "offensive"
    t: Literal["modHit"] = "modHit"
    add: int


class FxModWound(_Fx):
    intent: ClassVar[Intent] = "offensive"
    t: Literal["modWound"] = "modWound"
    add: int


class FxModHitAgainst(_Fx):
    intent: ClassVar[Intent] = "defensive"
    t: Literal["modHitAgainst"] = "modHitAgainst"
    add: int


class FxModWoundAgainst(_Fx):
    intent: ClassVar[Intent] = "defensive"
    t: Literal["modWoundAgainst"] = "modWoundAgainst"
    add: int


class FxModWeaponStat(_Fx):
    intent: ClassVar[Intent] = "offensive"
    t: Literal["modWeaponStat"] = "modWeaponStat"
    stat: Literal["S", "AP", "A", "D"]
    add: int


class FxModDefensiveStat(_Fx):
    intent: ClassVar[Intent] = "defensive"
    t: Literal["modDefensiveStat"] = "modDefensiveStat"
    stat: Literal["T", "SV", "W"]
    add: int


class FxSetDefensiveStat(_Fx):
    intent: ClassVar[Intent] = "defensive"
    t: Literal["setDefensiveStat"] = "setDefensiveStat"
    stat: Literal["T", "SV", "W"]
    n: int = Field(ge=1)


class FxModMove(_Fx):
    t: Literal["modMove"] = "modMove"
    add: int


class FxAddWeaponAbility(_Fx):
    intent: ClassVar[Intent] = "offensive"
    t: Literal["addWeaponAbility"] = "addWeaponAbility"
    ability: WeaponAbility


class FxAddUnitAbility(_Fx):
    t: Literal["addUnitAbility"] = "addUnitAbility"
    ability: UnitAbility


class FxAddKeyword(_Fx):
    t: Literal["addKeyword"] = "addKeyword"
    keyword: str
    value: int = 0


class FxSetInvuln(_Fx):
    intent: ClassVar[Intent] = "defensive"
    t: Literal["setInvuln"] = "setInvuln"
    n: int = Field(ge=2, le=7)


class FxSetFNP(_Fx):
    intent: ClassVar[Intent] = "defensive"
    t: Literal["setFNP"] = "setFNP"
    n: int = Field(ge=2, le=7)


class FxSetCriticalHit(_Fx):
    intent: ClassVar[Intent] = "offensive"
    t: Literal["setCriticalHit"] = "setCriticalHit"
    n: int = Field(ge=2, le=6)


class FxSetCriticalWound(_Fx):
    intent: ClassVar[Intent] = "offensive"
    t: Literal["setCriticalWound"] = "setCriticalWound"
    n: int = Field(ge=2, le=6)


class FxReroll(_Fx):
    intent: ClassVar[Intent] = "offensive"
    t: Literal["reroll"] = "reroll"
    phase: RerollPhase
    kind: RerollKind


class UnknownFx(_Node):
    """Any effect kind this engine does not know. Writes nothing."""
    model_config = ConfigDict(frozen=True, extra="allow")
    intent: ClassVar[Intent] = "neutral"
    t: str


_FX_TYPES = (
    FxModHit, FxModWound, FxModHitAgainst, FxModWoundAgainst, FxModWeaponStat,
    FxModDefensiveStat, FxSetDefensiveStat, FxModMove, FxAddWeaponAbility, FxAddUnitAbility,
    FxAddKeyword, FxSetInvuln, FxSetFNP, FxSetCriticalHit, FxSetCriticalWound, FxReroll,
)
_FX_TAGS = {cls.model_fields["t"].default for cls in _FX_TYPES}

Fx = Annotated[
    Union[
        Annotated[FxModHit, Tag("modHit")],
        Annotated[FxModWound, Tag("modWound")],
        Annotated[FxModHitAgainst, Tag("modHitAgainst")],
        Annotated[FxModWoundAgainst, Tag("modWoundAgainst")],
        Annotated[FxModWeaponStat, Tag("modWeaponStat")],
        Annotated[FxModDefensiveStat, Tag("modDefensiveStat")],
        Annotated[FxSetDefensiveStat, Tag("setDefensiveStat")],
        Annotated[FxModMove, Tag("modMove")],
        Annotated[FxAddWeaponAbility, Tag("addWeaponAbility")],
        Annotated[FxAddUnitAbility, Tag("addUnitAbility")],
        Annotated[FxAddKeyword, Tag("addKeyword")],
        Annotated[FxSetInvuln, Tag("setInvuln")],
        Annotated[FxSetFNP, Tag("setFNP")],
        Annotated[FxSetCriticalHit, Tag("setCriticalHit")],
        Annotated[FxSetCriticalWound, Tag("setCriticalWound")],
        Annotated[FxReroll, Tag("reroll")],
        Annotated[UnknownFx, Tag("unknown")],
    ],
    Discriminator(_node_tag(_FX_TAGS))
]


# -----------------------------
# Blocks
# -----------------------------

class DoBlock(_Node):
    t: Literal["do"] = "do"
    fx: List[Fx] = Field(default_factory=list)


class IfBlock(_Node):
    t: Literal["if"] = "if"
    when: When
    then: List["Block"] = Field(min_length=1)


Block = Annotated[Union[DoBlock, IfBlock], Field(discriminator="t")]

IfBlock.model_rebuild()


# -----------------------------
# Choices
# -----------------------------

class ChoiceLifetime(_Node):
    t: Literal["roll", "phase", "turn", "game"] = "game"


class ChoiceOption(_Node):
    v: str
    label: str
    then: List[Block] = Field(default_factory=list)


class Choice(_Node):
    id: str
    prompt: str
    lifetime: ChoiceLifetime = Field(default_factory=ChoiceLifetime)
    options: List[ChoiceOption] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_values(self):
        seen: set[str] = set()
        for o in self.options:
            if o.v in seen:
                raise ValueError(f"choice '{self.id}' has duplicate option value '{o.v}'")
            seen.add(o.v)
        return self

    def option_for(self, value: Optional[str]) -> Optional[ChoiceOption]:
        if value is None:
            return None
        for o in self.options:
            if o.v == value:
                return o
        return None


# -----------------------------
# Rules
# -----------------------------

class _RuleBase(_Node):
    id: str
    name: str
    description: str = ""
    faction: str = ""
    scope: Scope = "unit"
    trigger: Trigger = Field(default_factory=Trigger)
    when: When = Field(default_factory=WhenTrue)


class PassiveRule(_RuleBase):
    kind: Literal["passive"] = "passive"
    then: List[Block] = Field(min_length=1)


class ChoiceRule(_RuleBase):
    kind: Literal["choice"] = "choice"
    choice: Choice


class ReminderRule(_RuleBase):
    kind: Literal["reminder"] = "reminder"


Rule = Annotated[Union[PassiveRule, ChoiceRule, ReminderRule], Field(discriminator="kind")]


# -----------------------------
# Modifiers
# -----------------------------

CANONICAL_STATS = {"S", "T", "A", "AP", "D", "SV", "INV", "FNP", "M", "WS", "W"}
DERIVED_STATS = {"hit", "wound", "critHit", "critWound"}
_PREFIX_RE = re.compile(r"^(keyword|weaponAbility|unitAbility):[A-Za-z0-9][\w\- ]*$")
_REROLL_RE = re.compile(r"^reroll:(hit|wound|damage):(ones|failed|all)$")


def is_valid_stat_key(stat: str) -> bool:
    if stat in CANONICAL_STATS or stat in DERIVED_STATS:
        return True
    return bool(_PREFIX_RE.match(stat) or _REROLL_RE.match(stat))


class Modifier(_Node):
    source: str
    stat: str
    value: Union[int, float]
    operation: ModifierOperation = "add"
    priority: int = 0

    @model_validator(mode="after")
    def _validate(self):
        errs: list[str] = []
        if not is_valid_stat_key(self.stat):
            errs.append(
                f"stat key '{self.stat}' not allowed; use one of {sorted(CANONICAL_STATS | DERIVED_STATS)} "
                f"or keyword:/weaponAbility:/unitAbility:/reroll:<phase>:<kind>"
            )
        if self.stat.startswith("reroll:") and self.operation != "set":
            errs.append("reroll grants only support operation 'set'")
        if errs:
            raise ValueError("; ".join(errs))
        return self

    @property
    def signed_value(self) -> float:
        if self.operation == "add":
            return self.value
        if self.operation == "subtract":
            return -self.value
        return 0.0


# -----------------------------
# Army states
# -----------------------------

class ArmyState(_Node):
    id: str
    army_id: str
    state: str
    activated_turn: int = 1
    choice_value: Optional[str] = None
    target_unit_id: Optional[str] = None
    expires_phase: Optional[Phase] = None
    expires_turn: Optional[int] = None

    @property
    def has_value(self) -> bool:
        return bool(self.choice_value)


# -----------------------------
# Stratagems
# -----------------------------

StratagemPhase = Literal["any", "command", "move", "shoot", "charge", "fight", "move-or-charge"]
StratagemTurn = Literal["your-turn", "opponent-turn", "either"]


class Stratagem(_Node):
    id: str
    name: str
    cost: int = Field(default=1, ge=0)
    phase: StratagemPhase = "any"
    when: str = ""
    effect: str = ""
    faction: Optional[str] = None
    detachment: Optional[str] = None
    detachmentAliases: List[str] = Field(default_factory=list)
    turnRestriction: Literal["any", "first-turn-only", "second-turn-onwards"] = "any"
    turn: StratagemTurn = "either"

    @model_validator(mode="after")
    def _detachment_needs_faction(self):
        if self.detachment and not self.faction:
            raise ValueError(f"stratagem '{self.id}' names a detachment but no faction")
        return self

    @property
    def is_core(self) -> bool:
        return self.faction is None

