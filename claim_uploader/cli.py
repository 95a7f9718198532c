"""Command line interface for claim uploader."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from rich.logging import RichHandler

from .cli_progress import (
    TaskProgressDisplay,
    console,
    format_file_size,
    render_configuration_summary,
    render_summary,
)
from .models import FileRef, FileType, TransactionType, UploadConfig, UploadStatus
from .orchestrator import UploadOrchestrator
from .services import HTTPTransferClient
from .validation import ValidationError, build_classification, validate_file


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug or --log-level is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    if silent or (not debug and not log_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, log_level.upper(), logging.INFO)

    handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    return logging.getLevelName(level)


ENV_FILE_VARIABLE = "CLAIM_UP_ENV_FILE"


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    # Inline comments only apply to unquoted values
    return value.split(" #", 1)[0].rstrip()


def _parse_env_file(path: Path) -> Dict[str, str]:
    """Read KEY=VALUE pairs. Blank lines, comments and ``export`` prefixes are skipped."""
    if not path.is_file():
        raise CLIError(f"env file not found: {path}")
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    values: Dict[str, str] = {}
    for raw_line in lines:
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.removeprefix("export ").partition("=")
        key = key.strip()
        if sep and key:
            values[key] = _unquote(value)
    return values


def _load_env_file(path: Path, override: bool = False) -> List[str]:
    """Export the file's values into the environment; returns the keys applied."""
    applied = []
    for key, value in _parse_env_file(path).items():
        if override or key not in os.environ:
            os.environ[key] = value
            applied.append(key)
    return applied


def _resolve_env_file(explicit: Optional[Path]) -> Optional[Path]:
    """--env-file wins, then $CLAIM_UP_ENV_FILE, then ./.env when present."""
    if explicit is not None:
        return explicit
    configured = os.getenv(ENV_FILE_VARIABLE)
    if configured:
        return Path(configured).expanduser()
    default_env = Path(".env")
    return default_env if default_env.is_file() else None


def _build_file_refs(paths: Sequence[Path], file_type: Optional[FileType]) -> List[FileRef]:
    """Validate every source file before any task is created."""
    problems = []
    for path in paths:
        error = validate_file(path, file_type)
        if error:
            problems.append(f"{path}: {error}")
    if problems:
        raise CLIError("invalid input files:\n  " + "\n  ".join(problems))
    return [FileRef.from_path(path, file_type) for path in paths]


async def _run_upload(
    files: List[FileRef],
    classification,
    config: UploadConfig,
) -> int:
    display = TaskProgressDisplay()

    async with HTTPTransferClient.from_config(config) as client:
        async with UploadOrchestrator(client, config) as orchestrator:
            orchestrator.subscribe(display)
            orchestrator.on_task_removed(display.on_removed)
            display.start()
            try:
                tasks = [orchestrator.create_task(file, classification) for file in files]
                for task in tasks:
                    orchestrator.start_upload(task.id)
                await orchestrator.join()
            finally:
                display.stop()

            results = orchestrator.list_tasks()

    render_summary(results)

    failed = [task for task in results if task.status == UploadStatus.FAILED]
    pending = [task for task in results if not task.is_terminal]
    if pending:
        console.print(
            f"[yellow]{len(pending)} file(s) still processing in backend, please check later.[/yellow]"
        )
    if failed:
        console.print(f"[red]{len(failed)} of {len(results)} file(s) failed.[/red]")
        return 1
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claim-up",
        description="Upload claim files (X12/CSV) to the claims ingestion pipeline.",
    )
    parser.add_argument("files", nargs="*", type=Path, help="Claim files to upload")
    parser.add_argument(
        "-s",
        "--source-system",
        default=None,
        help="Source system label (example: Hospital_A)",
    )
    parser.add_argument(
        "-t",
        "--transaction-type",
        choices=[t.value for t in TransactionType],
        default=None,
        help="X12 transaction type",
    )
    parser.add_argument(
        "-f",
        "--file-type",
        choices=[t.value for t in FileType],
        default=None,
        help="File type (default: inferred from extension)",
    )
    parser.add_argument(
        "-d",
        "--business-date",
        default=None,
        help="Business date YYYY-MM-DD (default: today)",
    )
    parser.add_argument("-b", "--batch-name", default=None, help="Optional batch name tag")
    parser.add_argument(
        "--api-url",
        default=None,
        help="Claims API base URL (default from CLAIMS_API_BASE_URL)",
    )
    parser.add_argument(
        "-j",
        "--max-concurrent",
        type=int,
        default=None,
        help="Maximum simultaneous uploads (default from UPLOADER_MAX_CONCURRENT or 3)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help=f"Load environment variables from this .env file (default: ${ENV_FILE_VARIABLE} or ./.env)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="claim-up (from claim_uploader)",
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = _resolve_env_file(args.env_file)
    applied_keys: List[str] = []
    if used_env_file is not None:
        try:
            applied_keys = _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if not args.files:
        parser.print_help()
        return 0

    try:
        config = UploadConfig.from_env(
            api_base_url=args.api_url,
            max_concurrent_uploads=args.max_concurrent,
        )
        classification = build_classification(
            args.source_system,
            args.transaction_type,
            args.business_date or date.today().isoformat(),
            args.batch_name,
        )
        file_type = FileType(args.file_type) if args.file_type else None
        files = _build_file_refs([Path(p).expanduser() for p in args.files], file_type)
    except ValidationError as exc:
        for field, message in exc.errors.items():
            print(f"ERROR: {field}: {message}", file=sys.stderr)
        return 1
    except (CLIError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    render_configuration_summary(
        {
            "Files": len(files),
            "Total Size": format_file_size(sum(f.size for f in files)),
            "Source System": classification.source_system,
            "Transaction Type": classification.transaction_type.value,
            "Business Date": classification.business_date,
            "Batch": classification.batch_name or "-",
            "API": config.api_base_url,
            "Max Concurrent": config.max_concurrent_uploads,
            "Env File": f"{used_env_file} ({len(applied_keys)} applied)" if used_env_file else "-",
            "Logging": effective_log_mode,
        }
    )

    try:
        return asyncio.run(_run_upload(files, classification, config))
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
