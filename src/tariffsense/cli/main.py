"""Command-line interface for tariffsense."""

from __future__ import annotations

import json
import logging
from typing import Dict, Optional, Tuple

import click

from tariffsense.tariff.engine import ClassificationEngine, default_engine
from tariffsense.tariff.models import ClassificationResult, DutyRateModel
from tariffsense.tariff.programs import country_duty_summary
from tariffsense.tariff.taxonomy import normalize_code


def _parse_answers(values: Tuple[str, ...]) -> Dict[str, str]:
    answers: Dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip() or not value.strip():
            raise click.BadParameter(f"expected key=value, got {item!r}", param_hint="--answer")
        answers[key.strip()] = value.strip()
    return answers


def _echo_duty(duty: DutyRateModel) -> None:
    source = f" (from {duty.rate_source_code})" if duty.inherited and duty.rate_source_code else ""
    click.echo(f"  General rate: {duty.general_rate}{source}")
    for program in duty.additional_programs:
        click.echo(f"  + {program.program}: {program.rate:g}%")
    for program in duty.conditional_programs:
        click.echo(f"  ? {program.program}: {program.rate:g}% (if listed)")
    for special in duty.special_programs:
        click.echo(f"  Special: {special.program} {special.rate}")
    click.echo(f"  Effective: {duty.effective_rate:g}%")


def _echo_result(result: ClassificationResult) -> None:
    click.echo(f"Status: {result.status}")
    if result.selected_code:
        click.echo(f"Code: {result.formatted_code}  confidence {result.confidence:.2f}")
        click.echo(f"  {result.full_description}")
    if result.rationale:
        click.echo(f"Rationale: {result.rationale}")
    if result.duty_rate is not None:
        click.echo("Duty:")
        _echo_duty(result.duty_rate)
    for question in result.questions:
        click.echo(f"Question [{question.id}]: {question.question_text}")
        click.echo(f"  Options: {', '.join(question.options)}  ({question.impact_estimate})")
    for warning in result.warnings:
        click.echo(f"Warning: {warning}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log pipeline progress to stderr.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """HTS classification and duty resolution."""

    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING)
    ctx.ensure_object(dict)


def _engine(ctx: click.Context) -> ClassificationEngine:
    engine = ctx.obj.get("engine") if ctx.obj else None
    return engine if engine is not None else default_engine()


@cli.command("classify")
@click.argument("description")
@click.option("--material", default=None, help="Primary material, if known.")
@click.option("--origin", default=None, help="ISO country of origin (e.g. CN).")
@click.option("--answer", "answers", multiple=True, help="Answer to a previous question, as key=value.")
@click.option(
    "--rounds", "answered_rounds", type=click.IntRange(min=0), default=None,
    help="Question rounds the answers came from (default: inferred).",
)
@click.option("--json", "as_json", is_flag=True, help="Emit the full result as JSON.")
@click.pass_context
def classify_command(
    ctx: click.Context,
    description: str,
    material: Optional[str],
    origin: Optional[str],
    answers: Tuple[str, ...],
    answered_rounds: Optional[int],
    as_json: bool,
) -> None:
    """Classify DESCRIPTION into an HTS code."""

    if not description.strip():
        raise click.BadParameter("description must not be empty", param_hint="DESCRIPTION")
    result = _engine(ctx).classify(
        description,
        material=material,
        origin=origin.upper() if origin else None,
        previous_answers=_parse_answers(answers),
        answered_rounds=answered_rounds,
    )
    if as_json:
        click.echo(json.dumps(result.model_dump(), indent=2))
    else:
        _echo_result(result)


@cli.command("duty")
@click.argument("code")
@click.option("--origin", default=None, help="ISO country of origin (e.g. CN).")
@click.option("--json", "as_json", is_flag=True, help="Emit the duty breakdown as JSON.")
@click.pass_context
def duty_command(ctx: click.Context, code: str, origin: Optional[str], as_json: bool) -> None:
    """Resolve the stacked duty for CODE."""

    engine = _engine(ctx)
    if normalize_code(code) not in engine.store:
        raise click.ClickException(f"Unknown HTS code {code}")
    duty = engine.resolver.resolve(code, origin.upper() if origin else None)
    if as_json:
        click.echo(json.dumps(duty.model_dump(), indent=2))
        return
    click.echo(f"Duty for {code}" + (f" from {origin.upper()}" if origin else ""))
    _echo_duty(duty)


@cli.command("country")
@click.argument("origin")
@click.pass_context
def country_command(ctx: click.Context, origin: str) -> None:
    """List the additional-duty programs for goods from ORIGIN."""

    summary = country_duty_summary(origin, _engine(ctx).resolver.programs)
    click.echo(f"{summary.name} ({summary.country}) - {summary.trade_status}")
    for program in summary.programs:
        scope = "all products" if program.product_scope == "all" else "listed products"
        click.echo(f"  {program.name}: {program.rate:g}% on {scope}")
    click.echo(f"  Product-wide additional duty: {summary.unconditional_total:g}%")
    if summary.special is not None:
        click.echo(f"  Special program: {summary.special.name} ({summary.special.code}) {summary.special.rate}")


if __name__ == "__main__":
    cli()
