from __future__ import annotations
from pathlib import Path
import json
from battlecalc.engine.loader import RuleAdapter, ScenarioAdapter, StratagemAdapter
from battlecalc.engine.schema_models import ArmyState, Modifier

def export_schemas(out_dir: Path) -> list[Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    schemas = {
        "Rule.schema.json": RuleAdapter.json_schema(),
        "Stratagem.schema.json": StratagemAdapter.json_schema(),
        "Scenario.schema.json": ScenarioAdapter.json_schema(),
        "ArmyState.schema.json": ArmyState.model_json_schema(),
        "Modifier.schema.json": Modifier.model_json_schema(),
    }
    written: list[Path] = []
    for name, schema in schemas.items():
        path = out_dir / name
        path.write_text(json.dumps(schema, indent=2), encoding="utf-8")
        written.append(path)
    return written

if __name__ == "__main__":
    root = Path(__file__).resolve().parents[3] / "docs" / "schemas"
    export_schemas(root)
    print(f"Exported schemas to {root}")
