from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from ratecard_recon.config.loader import ConfigError, load_config, resolve_config_path
from ratecard_recon.db.postgres import PostgresRateCardRepository, resolve_dsn
from ratecard_recon.db.repository import InMemoryRateCardRepository, RateCardRepository, RepositoryError
from ratecard_recon.ingest.tokenizer import ParseError
from ratecard_recon.logging.error_log import ErrorLogBuffer
from ratecard_recon.logging.init import set_debug, setup_logging
from ratecard_recon.models.config_models import AppConfig
from ratecard_recon.models.error_record import ErrorRecord
from ratecard_recon.models.upload import ImportReport, ParseResult, RowStatus
from ratecard_recon.services.progress import RowProgressTracker
from ratecard_recon.services.sessions import UploadSessionStore
from ratecard_recon.services.template import TEMPLATE_FILE_NAME, build_template_csv
from ratecard_recon.services.workflow import confirm_import, parse_upload

"""CLI entrypoint.

Subcommands:
- template [-o FILE]              write the CSV template (stdout when no -o)
- parse FILE                      dry run; one line per row plus a SUMMARY line
- import FILE [--include-similar] parse, then confirm every eligible row
- serve [--host] [--port]         run the HTTP API with uvicorn

Exit codes: 0 every row ok, 2 some rows errored or were skipped, 1 fatal
(config, unreadable file, structurally broken CSV, storage failure).

Database: DISABLE_DB_CONNECT=1 forces mock mode (in-memory catalog). With
no database configured, or when the connection fails, the CLI also falls
back to mock mode.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

_DB_ENV_VARS = ("DATABASE_URL", "PGDSN", "PGHOST", "PGDATABASE")


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env so that database variables from it take precedence."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="ratecard-recon", description="Rate-card upload and settlement reconciliation")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--config", help="Path to the YAML config (default config/ratecards.yml)")
    sub = p.add_subparsers(dest="command", required=True)

    tpl = sub.add_parser("template", help="Write the CSV upload template")
    tpl.add_argument("-o", "--output", help=f"Output file (e.g. {TEMPLATE_FILE_NAME}); stdout if omitted")

    parse = sub.add_parser("parse", help="Analyze a CSV without importing")
    parse.add_argument("file", help="CSV file to analyze")

    imp = sub.add_parser("import", help="Analyze a CSV and import the eligible rows")
    imp.add_argument("file", help="CSV file to import")
    imp.add_argument("--include-similar", action="store_true", help="Also import rows overlapping existing cards")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return p.parse_args(argv)


async def _open_repository(cfg: AppConfig, logger: logging.Logger) -> tuple[RateCardRepository, str]:
    """Return (repository, mode) where mode is ``live`` or ``mock``."""
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
        return InMemoryRateCardRepository(), "mock"
    if not cfg.database.configured and not any(os.getenv(name) for name in _DB_ENV_VARS):
        logger.debug("no database configured -> mock mode")
        return InMemoryRateCardRepository(), "mock"

    repository = PostgresRateCardRepository(resolve_dsn(cfg.database))
    try:
        await repository.ensure_schema()
    except RepositoryError as e:
        if os.getenv("SUPPRESS_DB_WARNING") == "1":
            logger.debug(f"DB connection failed (suppressed warn) -> fallback to mock mode: {e}")
        else:
            logger.info(f"DB connection failed -> fallback to mock mode: {e}")
        return InMemoryRateCardRepository(), "mock"
    return repository, "live"


def _print_rows(result: ParseResult) -> None:
    for row in result.rows:
        print(f"row {row.row}: {row.status.value} {row.message}")


def _print_report(report: ImportReport) -> None:
    for item in report.results:
        if item.status == "imported":
            print(f"row {item.row}: imported id={item.id}")
        else:
            reason = item.reason.value if item.reason else "-"
            print(f"row {item.row}: skipped ({reason}) {item.message or ''}".rstrip())


def _run_template(args: argparse.Namespace, logger: logging.Logger) -> int:
    content = build_template_csv()
    if not args.output:
        sys.stdout.write(content)
        return EXIT_SUCCESS_ALL
    target = Path(args.output)
    try:
        target.write_text(content, encoding="utf-8")
    except OSError as e:
        logger.error(f"template: {e}")
        return EXIT_FATAL
    logger.info(f"template written: {target}")
    return EXIT_SUCCESS_ALL


async def _run_upload(args: argparse.Namespace, cfg: AppConfig, logger: logging.Logger, commit: bool) -> int:
    path = Path(args.file)
    try:
        data = path.read_bytes()
    except OSError as e:
        logger.error(f"file: {e}")
        return EXIT_FATAL

    error_log = ErrorLogBuffer(Path(cfg.error_log_dir or "logs"))
    repository, db_mode = await _open_repository(cfg, logger)
    store = UploadSessionStore(ttl_seconds=cfg.sessions.ttl_seconds, capacity=cfg.sessions.capacity)
    logger.info(f"mode={db_mode} file={path.name}")

    try:
        with RowProgressTracker(description="Analyzing rows") as progress:
            result = await parse_upload(
                data,
                path.name,
                repository=repository,
                store=store,
                config=cfg,
                error_log=error_log,
                progress=progress,
            )
        _print_rows(result)
        clean = result.summary.error == 0 and result.summary.duplicate == 0

        if commit:
            wanted = {RowStatus.VALID, RowStatus.SIMILAR} if args.include_similar else {RowStatus.VALID}
            row_ids = [r.row_id for r in result.rows if r.status in wanted]
            with RowProgressTracker(len(row_ids), description="Importing rows") as progress:
                report = await confirm_import(
                    result.analysis_id,
                    row_ids,
                    args.include_similar,
                    repository=repository,
                    store=store,
                    config=cfg,
                    error_log=error_log,
                    progress=progress,
                )
            _print_report(report)
            clean = clean and report.skipped == 0 and len(row_ids) == sum(
                1 for r in result.rows if r.importable
            )
    except ParseError as e:
        logger.error(f"parse: {e}")
        if not error_log.records:
            error_log.append(ErrorRecord.create(path.name, -1, "ROW_FAILURE", str(e)))
        error_log.flush()
        return EXIT_FATAL
    except RepositoryError as e:
        logger.error(f"repository: {e}")
        error_log.flush()
        return EXIT_FATAL

    log_path = error_log.flush()
    if log_path is not None:
        logger.info(f"row issues written to {log_path}")
    return EXIT_SUCCESS_ALL if clean else EXIT_PARTIAL_FAILURE


def _run_serve(args: argparse.Namespace, cfg: AppConfig, logger: logging.Logger) -> int:
    import uvicorn

    from ratecard_recon.api.app import create_app

    repository, db_mode = asyncio.run(_open_repository(cfg, logger))
    logger.info(f"mode={db_mode} serving on http://{args.host}:{args.port}")
    uvicorn.run(create_app(cfg, repository), host=args.host, port=args.port)
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # [] from tests must not fall through to sys.argv
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(logger)
        logger.debug("debug mode enabled")

    if args.command == "template":
        return _run_template(args, logger)

    try:
        cfg = load_config(resolve_config_path(args.config))
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.command == "serve":
        return _run_serve(args, cfg, logger)
    return asyncio.run(_run_upload(args, cfg, logger, commit=args.command == "import"))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
