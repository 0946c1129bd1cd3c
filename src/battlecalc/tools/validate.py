from __future__ import annotations
from pathlib import Path
import json
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Set
import yaml
import typer
from py_expression_eval import Parser
from pydantic import TypeAdapter, ValidationError

from battlecalc.engine.dice import is_dice_expr
from battlecalc.engine.loader import RuleAdapter, ScenarioAdapter, StratagemAdapter, _records
from battlecalc.engine.rules_runtime import walk_when
from battlecalc.engine.schema_models import ChoiceRule, PassiveRule, UnknownFx, UnknownWhen
from battlecalc.util.paths import content_dir as default_content_dir

# Weapon characteristics that may hold a dice expression
DICE_KEYS = {"A", "D"}

_parser = Parser()


def _prevalidate_dice(expr: Any, *, file_path: str, field_path: str) -> list[str]:
    if isinstance(expr, int):
        return []
    if not isinstance(expr, str) or not is_dice_expr(expr):
        return [f"{file_path}:{field_path}: invalid dice expression {expr!r} (expected e.g. 2, d6, 2d6, d3+3)"]
    # die terms collapse to constants before parsing
    probe = "".join("1" if ch in "dD" else ch for ch in expr.replace(" ", ""))
    try:
        _parser.parse(probe)
    except Exception as e:
        return [f"{file_path}:{field_path}: invalid dice expression syntax: {e}"]
    return []


def _walk_dice(data: object, *, file_path: str, prefix: str) -> list[str]:
    """
    Recursively walk a dict/list tree; for any key in DICE_KEYS under a weapon,
    check that the value is a dice expression the engine can roll.
    """
    errs: list[str] = []
    if isinstance(data, dict):
        for k, v in data.items():
            path = f"{prefix}.{k}" if prefix else k
            if k in DICE_KEYS and prefix.endswith("weapon"):
                errs.extend(_prevalidate_dice(v, file_path=file_path, field_path=path))
            if isinstance(v, (dict, list)):
                errs.extend(_walk_dice(v, file_path=file_path, prefix=path))
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            errs.extend(_walk_dice(item, file_path=file_path, prefix=f"{prefix}[{idx}]"))
    return errs


def _rule_blocks(rule: Any) -> List[Any]:
    if isinstance(rule, PassiveRule):
        return list(rule.then)
    if isinstance(rule, ChoiceRule):
        out: List[Any] = []
        for opt in rule.choice.options:
            out.extend(opt.then)
        return out
    return []


def _walk_blocks(blocks: Iterable[Any]) -> tuple[list[Any], list[Any]]:
    """Flatten blocks into (condition nodes, effect nodes)."""
    whens: list[Any] = []
    fxs: list[Any] = []
    for b in blocks:
        if b.t == "do":
            for fx in b.fx:
                fxs.append(fx)
                for cond in getattr(fx, "conditions", []) or []:
                    whens.extend(walk_when(cond))
        elif b.t == "if":
            whens.extend(walk_when(b.when))
            w, f = _walk_blocks(b.then)
            whens.extend(w)
            fxs.extend(f)
    return whens, fxs


app = typer.Typer(add_completion=False)


def _load(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        return yaml.safe_load(text) or {}
    return json.loads(text)


def _iter(root: Path, exts=(".json", ".yaml", ".yml")):
    if not root.exists():
        return
    for p in sorted(root.rglob("*")):
        if p.is_file() and p.suffix.lower() in exts:
            yield p


def validate_dir(content_dir: Path, *, warn_unused: bool = False, echo=typer.echo) -> bool:
    """Validate every rule, stratagem and scenario under content_dir. Returns True when clean."""
    ok = True
    groups: list[tuple[str, TypeAdapter, str]] = [
        ("rules", RuleAdapter, "rules"),
        ("stratagems", StratagemAdapter, "stratagems"),
        ("scenarios", ScenarioAdapter, ""),
    ]
    parsed: dict[str, list] = {k: [] for k, _, _ in groups}

    # 1) Per-record schema validation
    for sub, adapter, key in groups:
        for fp in _iter(content_dir / sub):
            data = _load(fp)
            records = _records(data, key) if key else [data]
            for idx, raw in enumerate(records):
                try:
                    obj = adapter.validate_python(raw)
                except ValidationError as e:
                    ok = False
                    echo(f"[ERROR] {fp}[{idx}]: {e}", err=True)
                    continue
                parsed[sub].append((fp, obj, raw))
            expr_errs = _walk_dice(data, file_path=str(fp), prefix=sub)
            if expr_errs:
                ok = False
                for msg in expr_errs:
                    echo(f"[ERROR] {msg}", err=True)

    # 2) Duplicate ids within a kind
    for sub in ("rules", "stratagems", "scenarios"):
        seen: Dict[str, str] = {}
        for fp, obj, _raw in parsed[sub]:
            if obj.id in seen:
                ok = False
                echo(f"[ERROR] Duplicate {sub[:-1]} id '{obj.id}' in {fp} (first defined in {seen[obj.id]})", err=True)
            else:
                seen[obj.id] = str(fp)

    # 3) Scenario -> rule references
    defined_rules: Set[str] = {o.id for _, o, _ in parsed["rules"]}
    used_rules: dict[str, set[str]] = defaultdict(set)
    for fp, scen, _raw in parsed["scenarios"]:
        for rid in [*scen.attacker_rules, *scen.defender_rules]:
            used_rules[rid].add(str(fp))
    for rid in sorted(set(used_rules) - defined_rules):
        ok = False
        locs = ", ".join(sorted(used_rules[rid]))
        echo(f"[ERROR] Missing rule id '{rid}' referenced from: {locs}", err=True)

    # 4) Inert nodes and army states no rule or scenario can produce (warnings)
    known_states: Set[str] = set()
    for _fp, rule, _raw in parsed["rules"]:
        if isinstance(rule, ChoiceRule):
            known_states.add(rule.choice.id)
    for _fp, scen, _raw in parsed["scenarios"]:
        known_states.update(s.state for s in scen.army_states)
    for fp, rule, _raw in parsed["rules"]:
        whens, fxs = _walk_blocks(_rule_blocks(rule))
        whens = walk_when(rule.when) + whens
        for node in whens:
            if isinstance(node, UnknownWhen):
                echo(f"[WARN] {fp}: rule '{rule.id}' has unknown condition kind '{node.t}' (always false)")
            elif node.t == "armyState":
                for state in node.is_:
                    if state not in known_states:
                        echo(f"[WARN] {fp}: rule '{rule.id}' checks army state '{state}' that nothing records")
        for fx in fxs:
            if isinstance(fx, UnknownFx):
                echo(f"[WARN] {fp}: rule '{rule.id}' has unknown effect kind '{fx.t}' (ignored)")

    if warn_unused:
        for rid in sorted(defined_rules - set(used_rules)):
            echo(f"[WARN] Rule id not used by any scenario: {rid}")

    return ok


@app.command("export-schemas")
def export_schemas_cmd(out: Path = typer.Option(Path("docs/schemas"), "--out")):
    from battlecalc.tools.export_schemas import export_schemas
    export_schemas(out)
    typer.echo(f"Exported schemas to {out}")


@app.command("validate-content")
def validate_content(
    content_dir: Optional[Path] = typer.Argument(None, help="Content directory (default: bundled content)"),
    warn_unused: bool = typer.Option(False, "--warn-unused", help="Warn on rules no scenario uses"),
):
    root = content_dir or default_content_dir()
    if not validate_dir(root, warn_unused=warn_unused):
        raise typer.Exit(code=1)
    typer.echo("Content validated successfully.")


# Map a file path to its adapter based on subfolder
TYPE_MAP = {
    "rules": (RuleAdapter, "rules"),
    "stratagems": (StratagemAdapter, "stratagems"),
    "scenarios": (ScenarioAdapter, ""),
}


def _which_adapter(path: Path):
    # Expect content/<kind>/... paths
    parts = path.as_posix().split("/")
    for kind in TYPE_MAP:
        if kind in parts:
            return TYPE_MAP[kind]
    return None


@app.command("validate-files")
def validate_files(paths: List[Path] = typer.Argument(...)):
    ok = True
    for fp in paths:
        if fp.suffix.lower() not in (".json", ".yaml", ".yml"):
            continue
        found = _which_adapter(fp)
        if found is None:
            continue
        adapter, key = found
        data = _load(fp)
        for idx, raw in enumerate(_records(data, key) if key else [data]):
            try:
                adapter.validate_python(raw)
            except ValidationError as e:
                ok = False
                typer.echo(f"[ERROR] {fp}[{idx}]: {e}", err=True)
        for msg in _walk_dice(data, file_path=str(fp), prefix=fp.parent.name):
            ok = False
            typer.echo(f"[ERROR] {msg}", err=True)

    if not ok:
        raise typer.Exit(code=1)
    typer.echo("Selected files validated successfully.")


if __name__ == "__main__":
    app()
