from __future__ import annotations
import random
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ..util.paths import content_dir
from .army_states import pending_command_choices, pending_start_of_battle_choices, states_for_army
from .combat_runtime import CombatResult, resolve_attack
from .context import combat_phase_for, prepare_side_rules
from .loader import ContentIndex, load_content
from .models import CombatOptions, GameInfo, Scenario, UnitSnapshot, WeaponProfile
from .schema_models import ArmyState, ChoiceRule, Rule, Stratagem
from .settings import Settings, load_settings
from .stratagems import DrawerEntry, available_stratagems, drawer_entries, usable_stratagems
from .trace import TraceSession

ENGINE_VERSION = "0.1.0"

RuleRefs = Sequence[Union[str, Rule]]


class CombatEngine:
    def __init__(self, settings: Optional[Settings] = None, content_path: Optional[Path] = None,
                 rng: Optional[random.Random] = None):
        self.settings: Settings = settings or load_settings()
        if content_path is not None:
            self.content_dir = content_path
        elif self.settings.content_dir:
            self.content_dir = Path(self.settings.content_dir)
        else:
            self.content_dir = content_dir()
        self.content: ContentIndex = load_content(self.content_dir)
        self.rng = rng or random.Random(self._get_rng_seed())

    def _get_rng_seed(self) -> int:
        if self.settings.rng_seed_mode == "random":
            return random.randint(0, 2**32 - 1)
        return self.settings.fixed_seed

    def _rules(self, refs: RuleRefs) -> List[Rule]:
        return [self.content.get_rule(r) if isinstance(r, str) else r for r in refs]

    def _side_rules(self, refs: RuleRefs, phase: str) -> List[Rule]:
        rules = self._rules(refs)
        army_wide = [r for r in rules if r.scope in ("army", "detachment")]
        unit = [r for r in rules if r.scope not in ("army", "detachment")]
        return prepare_side_rules(army_wide, unit, phase)

    def new_trace(self, force: bool = False) -> Optional[TraceSession]:
        return TraceSession() if (force or self.settings.trace_enabled) else None

    # -------- combat --------

    def resolve_attack(self, attacker: UnitSnapshot, defender: UnitSnapshot, weapon: WeaponProfile, *,
                       game: Optional[GameInfo] = None, options: Optional[CombatOptions] = None,
                       attacker_rules: RuleRefs = (), defender_rules: RuleRefs = (),
                       army_states: Sequence[ArmyState] = (),
                       trace: Optional[TraceSession] = None) -> CombatResult:
        phase = combat_phase_for(weapon)
        return resolve_attack(
            attacker, defender, weapon, self.rng,
            game=game, options=options,
            attacker_rules=self._side_rules(attacker_rules, phase),
            defender_rules=self._side_rules(defender_rules, phase),
            army_states=army_states,
            trace=trace if trace is not None else self.new_trace(),
        )

    def run_scenario(self, scenario: Union[str, Scenario], trace: Optional[TraceSession] = None) -> CombatResult:
        scen = self.content.get_scenario(scenario) if isinstance(scenario, str) else scenario
        return self.resolve_attack(
            scen.attacker, scen.defender, scen.weapon,
            game=scen.game, options=scen.options,
            attacker_rules=scen.attacker_rules, defender_rules=scen.defender_rules,
            army_states=scen.army_states, trace=trace,
        )

    # -------- army choices --------

    def pending_command_choices(self, army_id: str, rules: RuleRefs, states: Sequence[ArmyState],
                                current_turn: int) -> List[ChoiceRule]:
        own = states_for_army(states, army_id)
        return pending_command_choices(self._rules(rules), own, current_turn)

    def pending_start_of_battle_choices(self, army_id: str, rules: RuleRefs,
                                        states: Sequence[ArmyState]) -> List[ChoiceRule]:
        return pending_start_of_battle_choices(self._rules(rules), states_for_army(states, army_id))

    # -------- stratagems --------

    def stratagems(self, faction: Optional[str], detachment: Optional[str]) -> List[Stratagem]:
        return available_stratagems(self.content.stratagem_catalog(), faction, detachment)

    def usable_stratagems(self, faction: Optional[str], detachment: Optional[str], phase: str,
                          is_own_turn: bool, battle_round: Optional[int] = None) -> List[Stratagem]:
        return usable_stratagems(self.content.stratagem_catalog(), faction, detachment,
                                 phase, is_own_turn, battle_round)

    def stratagem_drawer(self, faction: Optional[str], detachment: Optional[str],
                         is_own_turn: bool) -> List[DrawerEntry]:
        return drawer_entries(self.stratagems(faction, detachment), is_own_turn)
