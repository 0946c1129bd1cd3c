from __future__ import annotations
import random
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from battlecalc.engine.dice import DiceRoll
from battlecalc.engine.dice_runtime import PhaseLog
from battlecalc.engine.engine import CombatEngine
from battlecalc.engine.loader import load_scenario_file
from battlecalc.engine.models import Scenario
from battlecalc.engine.rules_runtime import reminders_for
from battlecalc.engine.settings import load_settings

app = typer.Typer()


def _engine(content: Optional[Path], seed: Optional[int] = None) -> CombatEngine:
    rng = random.Random(seed) if seed is not None else None
    return CombatEngine(settings=load_settings(), content_path=content, rng=rng)


def _scenario(eng: CombatEngine, target: str) -> Scenario:
    path = Path(target)
    try:
        if path.suffix.lower() in (".yaml", ".yml", ".json") and path.exists():
            return load_scenario_file(path)
        return eng.content.get_scenario(target)
    except KeyError:
        typer.echo(f"Unknown scenario: {target}", err=True)
        raise typer.Exit(code=1)
    except ValidationError as e:
        typer.echo(f"[ERROR] {path}: {e}", err=True)
        raise typer.Exit(code=1)


def _fmt_roll(r: DiceRoll) -> str:
    s = f"{r.original_value}>{r.value}" if r.is_reroll else str(r.value)
    return s + "*" if r.is_critical else s


def _fmt_phase(log: PhaseLog) -> str:
    head = log.name
    if log.threshold is not None:
        head += f" {log.threshold}+" if log.threshold <= 6 else " (impossible)"
    if log.reroll_kind:
        head += f" [reroll {log.reroll_kind}]"
    rolls = " ".join(_fmt_roll(r) for r in log.rolls)
    line = f"{head}: {rolls} -> {log.successes}" if rolls else f"{head}: {log.successes}"
    if log.criticals:
        line += f" ({log.criticals} crit)"
    for n in log.notes:
        line += f"; {n}"
    return line


@app.command()
def simulate(
    target: str = typer.Argument(..., help="Scenario file or bundled scenario id"),
    trace: bool = typer.Option(False, "--trace", help="Print the evaluation trace"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Override the RNG seed"),
    content: Optional[Path] = typer.Option(None, "--content", help="Content directory"),
):
    eng = _engine(content, seed)
    scen = _scenario(eng, target)
    result = eng.run_scenario(scen, trace=eng.new_trace(force=trace))

    typer.echo(f"{scen.attacker.name or scen.attacker.id} -> {scen.defender.name or scen.defender.id} "
               f"with {result.modified_weapon.name} (S{result.modified_weapon.S} AP{result.modified_weapon.AP})")
    for log in result.phases():
        typer.echo("  " + _fmt_phase(log))
    if result.applied_rules:
        typer.echo("Applied rules: " + ", ".join(r.name for r in result.applied_rules))
    pending = [r for r in result.visible_rules if r not in result.applied_rules]
    if pending:
        typer.echo("Awaiting choices: " + ", ".join(r.name for r in pending))
    if result.added_keywords:
        typer.echo("Granted: " + ", ".join(result.added_keywords))
    typer.echo(", ".join(f"{k}={v}" for k, v in result.summary.items()))
    for line in result.trace_lines:
        typer.echo(line)


@app.command()
def stratagems(
    faction: Optional[str] = typer.Option(None, "--faction"),
    detachment: Optional[str] = typer.Option(None, "--detachment"),
    phase: Optional[str] = typer.Option(None, "--phase", help="Only stratagems usable in this phase"),
    own_turn: bool = typer.Option(True, "--own-turn/--opponent-turn"),
    battle_round: Optional[int] = typer.Option(None, "--round"),
    content: Optional[Path] = typer.Option(None, "--content", help="Content directory"),
):
    eng = _engine(content)
    if phase:
        for s in eng.usable_stratagems(faction, detachment, phase, own_turn, battle_round):
            typer.echo(f"{s.name} ({s.cost}CP) - {s.when}")
        return
    for entry in eng.stratagem_drawer(faction, detachment, own_turn):
        s = entry.stratagem
        mark = " " if entry.is_available_now else "x"
        typer.echo(f"[{mark}] {s.name} ({s.cost}CP, {s.phase}) - {s.when}")


@app.command()
def pending(
    target: str = typer.Argument(..., help="Scenario file or bundled scenario id"),
    army: Optional[str] = typer.Option(None, "--army", help="Army id (default: the attacker's army)"),
    content: Optional[Path] = typer.Option(None, "--content", help="Content directory"),
):
    eng = _engine(content)
    scen = _scenario(eng, target)
    army_id = army or scen.attacker.army_id
    refs = scen.attacker_rules if army_id == scen.attacker.army_id else scen.defender_rules
    rules = eng.content.rules_by_id(refs)
    turn = scen.game.current_turn

    for rule in eng.pending_start_of_battle_choices(army_id, rules, scen.army_states):
        typer.echo(f"[start of battle] {rule.name}: {rule.choice.prompt}")
        for o in rule.choice.options:
            typer.echo(f"    {o.v}: {o.label}")
    for rule in eng.pending_command_choices(army_id, rules, scen.army_states, turn):
        typer.echo(f"[command] {rule.name}: {rule.choice.prompt}")
        for o in rule.choice.options:
            typer.echo(f"    {o.v}: {o.label}")

    active = scen.game.active_army_id
    turn_context = "both" if active is None else ("own" if active == army_id else "opponent")
    for r in reminders_for(rules, scen.game.current_phase, turn_context, scen.army_states, army_id, turn):
        typer.echo(f"[reminder] {r.name}: {r.description}")


@app.command()
def validate(
    content_dir: Optional[Path] = typer.Argument(None, help="Content directory (default: bundled content)"),
    warn_unused: bool = typer.Option(False, "--warn-unused"),
):
    from battlecalc.tools.validate import validate_content
    validate_content(content_dir, warn_unused)


@app.command("export-schemas")
def export_schemas_cmd(out: Path = typer.Option(Path("docs/schemas"), "--out")):
    from battlecalc.tools.export_schemas import export_schemas
    export_schemas(out)
    typer.echo(f"Exported schemas to {out}")


if __name__ == "__main__":
    app()
