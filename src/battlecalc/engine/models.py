from __future__ import annotations
from typing import Dict, List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, computed_field

from .schema_models import ArmyState, Phase, UnitAbility


class ModelProfile(BaseModel):
    """One model's defensive profile. INV/FNP of None means the model has none."""
    model_config = ConfigDict(frozen=True)
    name: str = ""
    T: int = 4
    SV: int = 3
    INV: Optional[int] = None
    W: int = 1
    FNP: Optional[int] = None


class UnitSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)
    id: str
    army_id: str
    name: str = ""
    categories: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    abilities: List[UnitAbility] = Field(default_factory=list)
    models: List[ModelProfile] = Field(default_factory=lambda: [ModelProfile()])
    is_leader: Optional[bool] = None
    leader_id: Optional[str] = None
    bodyguard_unit_ids: List[str] = Field(default_factory=list)

    def has_category(self, name: str) -> bool:
        needle = name.lower()
        return any(c.lower() == needle for c in self.categories)

    @computed_field
    @property
    def leader(self) -> bool:
        if self.is_leader is not None:
            return self.is_leader
        return self.has_category("character")

    @property
    def is_led(self) -> bool:
        return bool(self.leader_id)

    @property
    def is_attached_leader(self) -> bool:
        return self.leader and bool(self.bodyguard_unit_ids)

    @property
    def model_count(self) -> int:
        return len(self.models)

    @property
    def lead_profile(self) -> ModelProfile:
        # The first model's profile stands in for the unit's defensive stats
        return self.models[0] if self.models else ModelProfile()


class WeaponProfile(BaseModel):
    model_config = ConfigDict(frozen=True)
    name: str
    range: int = 0  # inches; 0 means melee
    A: str = "1"
    WS: int = 3
    S: int = 4
    AP: int = 0
    D: str = "1"
    keywords: List[str] = Field(default_factory=list)

    @property
    def weapon_type(self) -> Literal["melee", "ranged"]:
        return "melee" if self.range == 0 else "ranged"

    def has_keyword(self, name: str) -> bool:
        needle = name.lower()
        return any(k.lower().startswith(needle) for k in self.keywords)


class CombatOptions(BaseModel):
    models_firing: Optional[int] = None  # None means every model in the attacking unit
    within_half_range: bool = False
    blast_bonus_attacks: int = 0
    unit_has_charged: bool = False
    unit_remained_stationary: bool = False
    user_inputs: Dict[str, str] = Field(default_factory=dict)


class GameInfo(BaseModel):
    id: str = "game"
    current_turn: int = 1
    current_phase: Phase = "shooting"
    # Army whose turn it is; None when the caller does not track it
    active_army_id: Optional[str] = None


class Scenario(BaseModel):
    """A stored attack: both units, the weapon, and which rules each side brings."""
    id: str
    name: str = ""
    attacker: UnitSnapshot
    defender: UnitSnapshot
    weapon: WeaponProfile
    game: GameInfo = Field(default_factory=GameInfo)
    options: CombatOptions = Field(default_factory=CombatOptions)
    attacker_rules: List[str] = Field(default_factory=list)
    defender_rules: List[str] = Field(default_factory=list)
    army_states: List[ArmyState] = Field(default_factory=list)
