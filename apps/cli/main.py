"""Typer CLI entrypoint for critic."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Literal, NoReturn, cast

import typer

from apps.cli.format_human import render_diff_summary, render_reconciliation_summary
from apps.cli.io import (
    build_output_paths,
    load_decisions,
    load_transcription,
    write_diff_atomic,
    write_error_json_atomic,
    write_reconciliation_atomic,
)
from critic.orchestrator.service import DEFAULT_MAX_INPUTS, ReconciliationService
from critic.pages.models import PageRef
from critic.reconcile.models import ManualDecision, Reconciliation
from critic.store.json_store import JsonDataStore
from critic.transcriptions.models import Transcription
from critic.transcriptions.policy_loader import load_policy
from critic.utils.errors import (
    CriticError,
    IncompleteReconciliation,
    PageAlreadyReconciled,
    UnknownScheme,
    UnmappedLabel,
)
from critic.verses.models import CanonicalVerse

app = typer.Typer(help="Critical edition reconciliation CLI", rich_markup_mode=None)
ReportMode = Literal["human", "json", "both"]

StoreOption = Annotated[
    Path | None,
    typer.Option("--store", help="JSON store file; state is kept in memory when omitted."),
]
PolicyOption = Annotated[
    Path | None,
    typer.Option("--policy", exists=True, dir_okay=False, help="Normalization policy YAML."),
]
WorkersOption = Annotated[
    int, typer.Option("--workers", min=1, help="Threads for pairwise alignment.")
]
ReportOption = Annotated[str, typer.Option("--report", help="human, json or both.")]
OutDirOption = Annotated[Path, typer.Option("--out-dir")]
TranscriptionOption = Annotated[
    list[Path] | None,
    typer.Option(
        "--transcription",
        exists=True,
        dir_okay=False,
        help="Transcription JSON/YAML file; repeat per input. Defaults to published ones.",
    ),
]

_EXIT_INTERNAL = 1
_EXIT_INCOMPLETE = 2
_EXIT_ALREADY_RECONCILED = 3
_EXIT_LABEL = 4


@app.callback()
def cli_callback(
    verbose: Annotated[bool, typer.Option("--verbose", help="Log core events to stderr.")] = False,
) -> None:
    """Verse registry and transcription reconciliation commands."""

    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")


@app.command("schemes")
def schemes_command(store: StoreOption = None) -> None:
    """List versification schemes."""

    service = _open_service(store, None, 1)
    for scheme in service.schemes():
        typer.echo(f"{scheme.id}\t{scheme.full_name}\t{scheme.shorthand}")


@app.command("register-scheme")
def register_scheme_command(
    full_name: Annotated[str, typer.Argument()],
    shorthand: Annotated[str, typer.Argument()],
    store: StoreOption = None,
) -> None:
    service = _open_service(store, None, 1)
    scheme = _guarded(lambda: service.register_scheme(full_name, shorthand))
    typer.echo(f"INFO: registered scheme {scheme.id} {scheme.full_name} ({scheme.shorthand})")


@app.command("register-verse")
def register_verse_command(
    scheme: Annotated[str, typer.Option("--scheme")],
    label: Annotated[str, typer.Option("--label")],
    store: StoreOption = None,
) -> None:
    """Allocate a new canonical verse under a label not seen before."""

    service = _open_service(store, None, 1)
    verse = _guarded(lambda: service.register_verse(scheme, label))
    typer.echo(str(verse))


@app.command("map-label")
def map_label_command(
    scheme: Annotated[str, typer.Option("--scheme")],
    verse: Annotated[int, typer.Option("--verse", min=1)],
    label: Annotated[str, typer.Option("--label")],
    overwrite: Annotated[bool, typer.Option("--overwrite")] = False,
    store: StoreOption = None,
) -> None:
    service = _open_service(store, None, 1)
    _guarded(lambda: service.map_label(scheme, CanonicalVerse(verse), label, overwrite=overwrite))
    typer.echo(f"INFO: V{verse} labelled '{label}' in {scheme}")


@app.command("resolve-label")
def resolve_label_command(
    scheme: Annotated[str, typer.Option("--scheme")],
    label: Annotated[str, typer.Option("--label")],
    store: StoreOption = None,
) -> None:
    """Print the canonical verse a label names in a scheme."""

    service = _open_service(store, None, 1)
    verse = _guarded(lambda: service.resolve_label(scheme, label))
    typer.echo(str(verse))


@app.command("translate-label")
def translate_label_command(
    label: Annotated[str, typer.Option("--label")],
    source: Annotated[str, typer.Option("--from")],
    target: Annotated[str, typer.Option("--to")],
    store: StoreOption = None,
) -> None:
    service = _open_service(store, None, 1)
    translation = _guarded(lambda: service.translate_label(label, source, target))
    if not translation.complete:
        typer.echo(
            f"ERROR: {translation.verse} has no label in {translation.target_scheme} yet"
        )
        raise typer.Exit(code=_EXIT_LABEL)
    typer.echo(translation.target_label)


@app.command("add-page")
def add_page_command(
    page: Annotated[str, typer.Argument(help="manuscript/page")],
    scheme: Annotated[str | None, typer.Option("--scheme")] = None,
    start: Annotated[str | None, typer.Option("--start", help="First verse label.")] = None,
    end: Annotated[str | None, typer.Option("--end", help="Last verse label.")] = None,
    store: StoreOption = None,
) -> None:
    service = _open_service(store, None, 1)
    ref = _guarded(lambda: PageRef.parse(page))
    ranged = start is not None or end is not None
    if ranged and scheme is None:
        typer.echo("ERROR: --scheme is required with --start/--end.")
        raise typer.Exit(code=_EXIT_INTERNAL)
    # an unmapped bound must not leave the page saved
    first = _guarded(lambda: service.resolve_label(scheme, start)) if start else None
    last = _guarded(lambda: service.resolve_label(scheme, end)) if end else None
    _guarded(lambda: service.add_page(ref.manuscript, ref.name))
    if ranged:
        _guarded(lambda: service.set_page_range(ref, first, last))
    typer.echo(f"INFO: added page {ref}")


@app.command("publish")
def publish_command(
    page: Annotated[str, typer.Option("--page")],
    transcription: Annotated[Path, typer.Option("--transcription", exists=True, dir_okay=False)],
    store: StoreOption = None,
    policy: PolicyOption = None,
) -> None:
    """Save a transcription for a page and publish it."""

    service = _open_service(store, policy, 1)
    loaded = _guarded(lambda: load_transcription(transcription, service.policy))
    _guarded(lambda: service.save_transcription(page, loaded.username, loaded.contents()))
    _guarded(lambda: service.publish_transcription(page, loaded.username))
    typer.echo(f"INFO: published {loaded.username} on {page}")


@app.command("diff")
def diff_command(
    page: Annotated[str, typer.Option("--page")],
    transcription: TranscriptionOption = None,
    out_dir: OutDirOption = Path("."),
    store: StoreOption = None,
    policy: PolicyOption = None,
    workers: WorkersOption = 1,
    report: ReportOption = "human",
) -> None:
    """Align the transcriptions of a page and write diff.json."""

    report_mode = _report_mode(report)
    paths = build_output_paths(out_dir)
    service = _open_service(store, policy, workers)
    inputs = _load_inputs(transcription, service, paths.diff)

    try:
        result = service.diff(page, inputs)
    except (CriticError, ValueError) as exc:
        _fail(paths.diff, exc, "diff")

    write_diff_atomic(paths, result)
    if report_mode in {"human", "both"}:
        typer.echo(render_diff_summary(result))
    if report_mode in {"json", "both"}:
        typer.echo(result.model_dump_json())
    typer.echo("INFO: success")


@app.command("reconcile")
def reconcile_command(
    page: Annotated[str, typer.Option("--page")],
    author: Annotated[str, typer.Option("--author")],
    transcription: TranscriptionOption = None,
    decisions: Annotated[
        Path | None, typer.Option("--decisions", exists=True, dir_okay=False)
    ] = None,
    finalize: Annotated[
        bool, typer.Option("--finalize", help="Finalize straight away; fails if undecided.")
    ] = False,
    out_dir: OutDirOption = Path("."),
    store: StoreOption = None,
    policy: PolicyOption = None,
    workers: WorkersOption = 1,
    report: ReportOption = "human",
) -> None:
    """Start a reconciliation of a page and write reconciliation.json."""

    report_mode = _report_mode(report)
    paths = build_output_paths(out_dir)
    service = _open_service(store, policy, workers)
    inputs = _load_inputs(transcription, service, paths.reconciliation)
    manual: list[ManualDecision] = []
    if decisions is not None:
        try:
            manual = load_decisions(decisions)
        except ValueError as exc:
            _fail(paths.reconciliation, exc, "load_decisions")

    try:
        reconciliation = service.reconcile(page, inputs, manual, author=author)
    except (CriticError, ValueError) as exc:
        _fail(paths.reconciliation, exc, "reconcile")

    exit_code = 0
    if finalize:
        try:
            reconciliation = service.finalize(page)
        except IncompleteReconciliation:
            exit_code = _EXIT_INCOMPLETE
    elif reconciliation.undecided_groups():
        typer.echo(
            "WARNING(undecided): "
            f"{len(reconciliation.undecided_groups())} group(s) need a decision before finalize."
        )

    write_reconciliation_atomic(paths, reconciliation)
    _echo_reconciliation(reconciliation, report_mode)
    if exit_code == _EXIT_INCOMPLETE:
        typer.echo("ERROR: reconciliation incomplete")
        raise typer.Exit(code=exit_code)
    typer.echo("INFO: success")


@app.command("finalize")
def finalize_command(
    page: Annotated[str, typer.Option("--page")],
    decisions: Annotated[
        Path | None, typer.Option("--decisions", exists=True, dir_okay=False)
    ] = None,
    out_dir: OutDirOption = Path("."),
    store: StoreOption = None,
    policy: PolicyOption = None,
    report: ReportOption = "human",
) -> None:
    """Apply outstanding decisions to a stored draft and finalize it."""

    report_mode = _report_mode(report)
    paths = build_output_paths(out_dir)
    service = _open_service(store, policy, 1)
    try:
        if decisions is not None:
            service.decide(page, load_decisions(decisions))
        reconciliation = service.finalize(page)
    except (CriticError, ValueError) as exc:
        _fail(paths.reconciliation, exc, "finalize")

    write_reconciliation_atomic(paths, reconciliation)
    _echo_reconciliation(reconciliation, report_mode)
    typer.echo("INFO: success")


@app.command("retire")
def retire_command(
    page: Annotated[str, typer.Option("--page")],
    store: StoreOption = None,
) -> None:
    """Retire a finalized reconciliation, freeing the page."""

    service = _open_service(store, None, 1)
    retired = _guarded(lambda: service.retire(page))
    typer.echo(f"INFO: retired reconciliation of {retired.page} by {retired.author}")


def _open_service(store: Path | None, policy: Path | None, workers: int) -> ReconciliationService:
    try:
        return ReconciliationService(
            JsonDataStore(store),
            policy=load_policy(policy),
            max_workers=workers,
            max_inputs=DEFAULT_MAX_INPUTS,
        )
    except (CriticError, ValueError) as exc:
        typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
        raise typer.Exit(code=_EXIT_INTERNAL) from exc


def _load_inputs(
    files: list[Path] | None, service: ReconciliationService, error_path: Path
) -> list[Transcription] | None:
    if not files:
        return None
    try:
        return [load_transcription(path, service.policy) for path in files]
    except ValueError as exc:
        _fail(error_path, exc, "load_transcriptions")


def _report_mode(value: str) -> ReportMode:
    normalized = value.lower().strip()
    if normalized not in {"human", "json", "both"}:
        typer.echo("ERROR: --report must be one of: human, json, both.")
        raise typer.Exit(code=_EXIT_INTERNAL)
    return cast(ReportMode, normalized)


def _echo_reconciliation(reconciliation: Reconciliation, report_mode: ReportMode) -> None:
    if report_mode in {"human", "both"}:
        typer.echo(render_reconciliation_summary(reconciliation))
    if report_mode in {"json", "both"}:
        typer.echo(reconciliation.model_dump_json())


def _exit_code_for(exc: Exception) -> int:
    if isinstance(exc, IncompleteReconciliation):
        return _EXIT_INCOMPLETE
    if isinstance(exc, PageAlreadyReconciled):
        return _EXIT_ALREADY_RECONCILED
    if isinstance(exc, (UnmappedLabel, UnknownScheme)):
        return _EXIT_LABEL
    return _EXIT_INTERNAL


def _fail(path: Path, exc: Exception, stage: str) -> NoReturn:
    typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
    try:
        write_error_json_atomic(
            path,
            error_type=type(exc).__name__,
            error_message=str(exc),
            stage=stage,
            context=exc.context if isinstance(exc, CriticError) else None,
        )
    except OSError as write_exc:
        typer.echo(f"ERROR: error report write failed: {write_exc}")
    raise typer.Exit(code=_exit_code_for(exc)) from exc


def _guarded(action):
    try:
        return action()
    except (CriticError, ValueError) as exc:
        typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
        raise typer.Exit(code=_exit_code_for(exc)) from exc


def main() -> None:
    """Console script entrypoint."""

    app()


if __name__ == "__main__":
    main()
