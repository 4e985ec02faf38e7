# ruff: noqa: I001
"""CLI for the ``finance_tracker`` package.

Each subcommand has a plain ``cmd_*`` handler returning an exit status, plus a
thin Typer wrapper. Handlers print JSON results to stdout and errors to
stderr. The root callback loads a local ``.env`` (without overriding the
environment) and configures logging. Business logic lives in
``finance_tracker.ingest``, ``finance_tracker.consolidation`` and friends.
"""

from __future__ import annotations

import dataclasses
import json
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .logging_setup import configure_logging


# ---- Small module-level helpers used by CLI commands -------------------------


def _emit(payload: Any) -> None:
    if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
        payload = dataclasses.asdict(payload)
    typer.echo(json.dumps(payload, indent=2, default=str, ensure_ascii=False))


def _error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def _pair_payload(pair: Any) -> dict[str, Any]:
    from .consolidation import score_recommendation

    confidence, text = score_recommendation(pair.combined)
    return {
        "merchant1": pair.merchant1,
        "merchant2": pair.merchant2,
        "score": round(pair.combined, 3),
        "scores": pair.score.as_dict(),
        "confidence": confidence.value,
        "recommendation": text,
    }


def _group_payload(group: Any) -> dict[str, Any]:
    from .consolidation import recommendation

    confidence, text = recommendation(group)
    return {
        "canonical": group.canonical,
        "variants": list(group.variants),
        "needsReview": group.needs_review,
        "reviewReason": group.review_reason,
        "minScore": round(group.min_score, 3),
        "confidence": confidence.value,
        "recommendation": text,
        "pairs": [_pair_payload(p) for p in group.pairs],
    }


def _batch_payload(summary: Any) -> dict[str, Any]:
    return {
        "success": True,
        "dryRun": summary.dry_run,
        "transactionsUpdated": summary.transactions_updated,
        "transactionsDeleted": summary.transactions_deleted,
        "groupsSucceeded": summary.successful,
        "results": [dataclasses.asdict(r) for r in summary.results],
        "planned": [_group_payload(g) for g in summary.planned],
        "flagged": [_group_payload(g) for g in summary.flagged],
    }


# ---- Command handlers ---------------------------------------------------------


def cmd_import_statement(json_path: Path, *, database_url: str | None = None) -> int:
    """Import a parsed statement (raw parser output containing one JSON object)."""

    from db.client import session_scope
    from .ingest import extract_statement_payload, import_statement

    try:
        text = Path(json_path).read_text(encoding="utf-8")
    except OSError as e:
        return _error(f"cannot read {json_path}: {e}")

    try:
        statement = extract_statement_payload(text)
    except ValueError as e:
        return _error(str(e))

    try:
        with session_scope(database_url=database_url) as session:
            summary = import_statement(session, statement)
    except RuntimeError as e:
        return _error(str(e))

    _emit(summary)
    return 0


def cmd_analyze(threshold: float | None = None, *, database_url: str | None = None) -> int:
    from db.client import session_scope
    from .consolidation import analyze

    try:
        with session_scope(database_url=database_url) as session:
            report = analyze(session, threshold)
    except (ValueError, RuntimeError) as e:
        return _error(str(e))

    _emit(
        {
            "merchantsAnalyzed": report.merchants_analyzed,
            "threshold": report.threshold,
            "groups": [_group_payload(g) for g in report.groups],
            "candidates": [dataclasses.asdict(b) for b in report.buckets],
        }
    )
    return 0


def cmd_fix(fixes_path: Path, *, database_url: str | None = None) -> int:
    """Apply manual fixes from a JSON file (a list, or ``{"fixes": [...]}``)."""

    from db.client import session_scope
    from .consolidation import apply_fixes
    from .requests import InvalidRequestError, parse_fixes

    try:
        data = json.loads(Path(fixes_path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        return _error(f"cannot load fixes from {fixes_path}: {e}")
    if isinstance(data, dict):
        data = data.get("fixes")

    try:
        request = parse_fixes(data)
    except InvalidRequestError as e:
        return _error(f"invalid fixes: {e}")

    try:
        with session_scope(database_url=database_url) as session:
            summary = apply_fixes(session, request)
    except RuntimeError as e:
        return _error(str(e))

    _emit(_batch_payload(summary))
    return 0


def cmd_consolidate(threshold: float | None = None, *, database_url: str | None = None) -> int:
    from db.client import session_scope
    from .consolidation import consolidate

    try:
        with session_scope(database_url=database_url) as session:
            summary = consolidate(session, threshold)
    except (ValueError, RuntimeError) as e:
        return _error(str(e))

    _emit(_batch_payload(summary))
    return 0


def cmd_merge_normalized(
    *, confirm: bool, dry_run: bool = False, database_url: str | None = None
) -> int:
    from db.client import session_scope
    from .consolidation import handle_request
    from .requests import InvalidRequestError, MergeNormalized, require_confirmation

    request = MergeNormalized(confirm=confirm, auto_fix=not dry_run)
    try:
        require_confirmation(request)
        with session_scope(database_url=database_url) as session:
            summary = handle_request(session, request)
    except (InvalidRequestError, RuntimeError) as e:
        return _error(str(e))

    _emit(_batch_payload(summary))
    return 0


def cmd_migrate_ids(*, confirm: bool, database_url: str | None = None) -> int:
    from db.client import session_scope
    from .consolidation import handle_request
    from .requests import InvalidRequestError, MigrateIdentities, require_confirmation

    request = MigrateIdentities(confirm=confirm)
    try:
        require_confirmation(request)
        with session_scope(database_url=database_url) as session:
            summary = handle_request(session, request)
    except (InvalidRequestError, RuntimeError) as e:
        return _error(str(e))

    _emit(summary)
    return 0


def cmd_score(merchant1: str, merchant2: str, threshold: float = 0.75) -> int:
    from .similarity import analyze_match, predict

    try:
        prediction = predict(merchant1, merchant2, threshold)
    except ValueError as e:
        return _error(str(e))
    match = analyze_match(merchant1, merchant2)
    _emit(
        {
            "merchant1": merchant1,
            "merchant2": merchant2,
            "isDuplicate": prediction.is_duplicate,
            "score": round(prediction.score, 3),
            "confidence": prediction.confidence.value,
            "threshold": prediction.threshold,
            "scores": match.scores.as_dict(),
            "breakdown": match.breakdown,
            "verdict": match.verdict,
        }
    )
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Import bank statements and deduplicate merchant names in the ledger.",
)

# Module-level option object to satisfy ruff B008 (no calls in parameter
# defaults). Typer will inspect this when used as a default value below.
JSON_PATH_OPTION: OptionInfo = typer.Option(
    ...,  # required
    "--json-path",
    help="Parser output holding one statement JSON object",
    dir_okay=False,
    file_okay=True,
    exists=False,  # allow non-existent here; the handler will report nice errors
)
FIXES_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--fixes-path",
    help="JSON list of fix instructions (groupId, canonicalMerchant, transactionIds)",
    dir_okay=False,
    file_okay=True,
    exists=False,
)


@app.command("import-statement")
def import_statement_cmd(
    json_path: Annotated[Path, JSON_PATH_OPTION],
    *,
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Import one parsed statement, reconciling repeated charges."""

    raise typer.Exit(cmd_import_statement(json_path, database_url=database_url))


@app.command("analyze")
def analyze_cmd(
    *,
    threshold: float | None = typer.Option(
        None, help="Similarity threshold in [0.5, 0.95] (defaults to FT_DUPLICATE_THRESHOLD)."
    ),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Report probable duplicate merchants without changing anything."""

    raise typer.Exit(cmd_analyze(threshold, database_url=database_url))


@app.command("fix")
def fix_cmd(
    fixes_path: Annotated[Path, FIXES_PATH_OPTION],
    *,
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Consolidate explicit transaction groups onto chosen merchants."""

    raise typer.Exit(cmd_fix(fixes_path, database_url=database_url))


@app.command("consolidate")
def consolidate_cmd(
    *,
    threshold: float | None = typer.Option(
        None, help="Clustering threshold in [0.5, 0.95] (defaults to FT_DUPLICATE_THRESHOLD)."
    ),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Auto-consolidate unambiguous high-similarity merchant groups."""

    raise typer.Exit(cmd_consolidate(threshold, database_url=database_url))


@app.command("merge-normalized")
def merge_normalized_cmd(
    *,
    confirm: bool = typer.Option(False, help="Required: this command rewrites rows."),
    dry_run: bool = typer.Option(False, help="Report planned merges without applying them."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Merge merchant spellings that normalize to the same name."""

    raise typer.Exit(
        cmd_merge_normalized(confirm=confirm, dry_run=dry_run, database_url=database_url)
    )


@app.command("migrate-ids")
def migrate_ids_cmd(
    *,
    confirm: bool = typer.Option(False, help="Required: this command rewrites every id."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Rewrite legacy transaction ids into the canonical identity scheme."""

    raise typer.Exit(cmd_migrate_ids(confirm=confirm, database_url=database_url))


@app.command("score")
def score_cmd(
    merchant1: Annotated[str, typer.Argument(help="First merchant name.")],
    merchant2: Annotated[str, typer.Argument(help="Second merchant name.")],
    *,
    threshold: float = typer.Option(0.75, help="Decision threshold in [0.5, 0.95]."),
) -> None:
    """Score two merchant names and explain the result."""

    raise typer.Exit(cmd_score(merchant1, merchant2, threshold))


@app.callback()
def _root() -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m finance_tracker.cli`
    app()
