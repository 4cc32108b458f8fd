from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
import yaml
from pydantic import ValidationError

from clinical_calculators.clinical_risk_calculator import (
    ClinicalRiskCalculator,
    InputValidationError,
    MalformedModelDefinitionError,
    ModelDefinition,
    UnknownModelError,
)
from clinical_calculators.clinical_risk_calculator.registry import ModelRegistry
from clinical_calculators.clinical_risk_calculator.table_loader import clear_cache
from clinical_calculators.settings import CalculatorSettings, configure_logging

app = typer.Typer(no_args_is_help=True, help="Clinical calculators CLI - score clinical risk models")

_TRUE = {"true", "yes", "1", "on"}
_FALSE = {"false", "no", "0", "off"}


@app.callback()
def main(
    ctx: typer.Context,
    tables_dir: Path | None = typer.Option(
        None, "--tables-dir", help="Directory with models.yaml and the CSV tables"
    ),
    no_calibration: bool = typer.Option(
        False, "--no-calibration", help="Skip post-hoc calibration rules"
    ),
    log_level: str | None = typer.Option(None, "--log-level"),
) -> None:
    """Clinical risk calculators (numeric core only)."""
    try:
        settings = CalculatorSettings.from_env()
    except ValidationError as exc:
        raise typer.BadParameter(f"invalid CLINICAL_CALC_* environment: {exc}") from exc

    updates: dict[str, Any] = {}
    if tables_dir is not None:
        updates["tables_dir"] = tables_dir
    if no_calibration:
        updates["apply_calibration"] = False
    if log_level is not None:
        updates["log_level"] = log_level
    if updates:
        try:
            settings = CalculatorSettings.model_validate({**settings.model_dump(), **updates})
        except ValidationError as exc:
            raise typer.BadParameter(str(exc)) from exc

    configure_logging(settings.log_level)
    ctx.obj = settings


def _calculator(ctx: typer.Context) -> ClinicalRiskCalculator:
    return ClinicalRiskCalculator(settings=ctx.obj)


def _definition(calculator: ClinicalRiskCalculator, model_id: str) -> ModelDefinition:
    try:
        return calculator.registry.get(model_id)
    except UnknownModelError as exc:
        typer.echo(json.dumps(exc.to_dict(), indent=2))
        raise typer.Exit(code=2) from exc


def _coerce(definition: ModelDefinition, name: str, text: str) -> Any:
    """Turn a --set value into what a form would send for that field."""
    spec = definition.field(name)
    if spec is not None and spec.kind == "boolean":
        lowered = text.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    return text


def _read_input(
    definition: ModelDefinition, input_file: Path | None, assignments: list[str]
) -> dict[str, Any]:
    clinical_input: dict[str, Any] = {}
    if input_file is not None:
        with open(input_file, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise typer.BadParameter("input file must hold a mapping of field names to values")
        clinical_input.update(data)

    for assignment in assignments:
        name, sep, text = assignment.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"expected field=value, got {assignment!r}")
        clinical_input[name.strip()] = _coerce(definition, name.strip(), text)
    return clinical_input


@app.command(name="models")
def list_models(ctx: typer.Context) -> None:
    """List registered model ids."""
    for definition in _calculator(ctx).registry:
        typer.echo(f"{definition.model_id}\t{definition.title}")


@app.command()
def describe(ctx: typer.Context, model_id: str = typer.Argument(...)) -> None:
    """Print a model's field declarations as YAML."""
    definition = _definition(_calculator(ctx), model_id)
    document = {
        "model_id": definition.model_id,
        "title": definition.title,
        "algorithm": definition.algorithm.value,
        "categories": definition.categories,
        "fields": [
            spec.model_dump(mode="json", exclude_defaults=True) for spec in definition.fields
        ],
    }
    typer.echo(yaml.safe_dump(document, sort_keys=False))


@app.command(name="validate")
def validate_command(
    ctx: typer.Context,
    model_id: str = typer.Argument(...),
    input_file: Path | None = typer.Option(None, "--input", "-i", exists=True, dir_okay=False),
    assignments: list[str] = typer.Option([], "--set", "-s", help="field=value (repeatable)"),
) -> None:
    """Validate an input and print the field errors as JSON."""
    calculator = _calculator(ctx)
    definition = _definition(calculator, model_id)
    clinical_input = _read_input(definition, input_file, assignments)

    errors = calculator.validate(model_id, clinical_input)
    typer.echo(json.dumps([e.model_dump(mode="json") for e in errors], indent=2))
    if errors:
        raise typer.Exit(code=1)


@app.command()
def calculate(
    ctx: typer.Context,
    model_id: str = typer.Argument(...),
    input_file: Path | None = typer.Option(None, "--input", "-i", exists=True, dir_okay=False),
    assignments: list[str] = typer.Option([], "--set", "-s", help="field=value (repeatable)"),
) -> None:
    """Calculate a result and print it as JSON."""
    calculator = _calculator(ctx)
    definition = _definition(calculator, model_id)
    clinical_input = _read_input(definition, input_file, assignments)

    try:
        result = calculator.score(model_id, clinical_input)
    except InputValidationError as exc:
        typer.echo(json.dumps(exc.to_dict(), indent=2))
        raise typer.Exit(code=1) from exc

    typer.echo(result.model_dump_json(indent=2))


@app.command(name="self-check")
def self_check(ctx: typer.Context) -> None:
    """Reload every table and run the structural checks."""
    settings: CalculatorSettings = ctx.obj
    clear_cache()
    try:
        registry = ModelRegistry.from_tables(settings.tables_dir)
    except FileNotFoundError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    except MalformedModelDefinitionError as exc:
        typer.echo(json.dumps(exc.to_dict(), indent=2))
        raise typer.Exit(code=1) from exc

    for definition in registry:
        typer.echo(f"ok\t{definition.model_id}")
    typer.echo(f"{len(registry)} models checked in {settings.tables_dir}")


if __name__ == "__main__":
    app()
