from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple
import json
import yaml
from pydantic import TypeAdapter

from .models import Scenario
from .schema_models import Rule, Stratagem

RuleAdapter = TypeAdapter(Rule)
StratagemAdapter = TypeAdapter(Stratagem)
ScenarioAdapter = TypeAdapter(Scenario)


def _load_file(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in [".yaml", ".yml"]:
        return yaml.safe_load(text) or {}
    return json.loads(text)


def _iter_files(root: Path, exts: Tuple[str, ...] = (".json", ".yaml", ".yml")) -> Iterable[Path]:
    if not root.exists():
        return []
    return sorted(p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in exts)


def _records(data: Any, key: str) -> List[Any]:
    """A file holds one record, a list of records, or a mapping with a list under `key`."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and key in data and isinstance(data[key], list):
        return data[key]
    return [data]


@dataclass
class ContentIndex:
    rules: Dict[str, Rule] = field(default_factory=dict)
    stratagems: Dict[str, Stratagem] = field(default_factory=dict)
    scenarios: Dict[str, Scenario] = field(default_factory=dict)

    def get_rule(self, rid: str) -> Rule:
        return self.rules[rid]

    def rules_by_id(self, ids: List[str]) -> List[Rule]:
        missing = [i for i in ids if i not in self.rules]
        if missing:
            raise KeyError(f"Unknown rule id(s): {', '.join(missing)}")
        return [self.rules[i] for i in ids]

    def rules_for_faction(self, faction: str) -> List[Rule]:
        f = faction.lower()
        return [r for r in self.rules.values() if r.faction.lower() == f]

    def stratagem_catalog(self) -> List[Stratagem]:
        return list(self.stratagems.values())

    def get_scenario(self, sid: str) -> Scenario:
        return self.scenarios[sid]


def load_content(base_dir: Path) -> ContentIndex:
    rules: Dict[str, Rule] = {}
    for fp in _iter_files(base_dir / "rules"):
        for raw in _records(_load_file(fp), "rules"):
            rule = RuleAdapter.validate_python(raw)
            if rule.id in rules:
                raise RuntimeError(f"Duplicate rule id {rule.id} in {fp}")
            rules[rule.id] = rule

    stratagems: Dict[str, Stratagem] = {}
    for fp in _iter_files(base_dir / "stratagems"):
        for raw in _records(_load_file(fp), "stratagems"):
            strat = StratagemAdapter.validate_python(raw)
            if strat.id in stratagems:
                raise RuntimeError(f"Duplicate stratagem id {strat.id} in {fp}")
            stratagems[strat.id] = strat

    scenarios: Dict[str, Scenario] = {}
    for fp in _iter_files(base_dir / "scenarios"):
        scen = ScenarioAdapter.validate_python(_load_file(fp))
        if scen.id in scenarios:
            raise RuntimeError(f"Duplicate scenario id {scen.id} in {fp}")
        scenarios[scen.id] = scen

    return ContentIndex(rules=rules, stratagems=stratagems, scenarios=scenarios)


def load_scenario_file(path: Path) -> Scenario:
    return ScenarioAdapter.validate_python(_load_file(path))
