from __future__ import annotations

import argparse
import getpass
import sys
from pathlib import Path

from .backup import BackupError, run_backup
from .config import ConfigError, load_config
from .doctor import format_results, run_doctor, sudoers_help
from .keyfile import generate_keyfile
from .logging_utils import setup_logging


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--env-file", default=None, help="Env file with CAMVAULT_* settings (default: ./.env)")
    p.add_argument("--source", default=None, help="Camera/card directory to back up (CAMVAULT_SOURCE_LOCATION)")
    p.add_argument("--quiet", action="store_true", help="Reduce log verbosity (INFO level only, no DEBUG)")


def _load(args: argparse.Namespace):
    return load_config(env_file=args.env_file, source_location=args.source)


def cmd_run(args: argparse.Namespace) -> int:
    logger = setup_logging(verbose=not args.quiet)
    try:
        cfg = _load(args)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    if cfg.log_file is not None:
        logger = setup_logging(log_file=cfg.log_file, verbose=not args.quiet)

    try:
        report = run_backup(
            cfg,
            retrieve=not args.no_retrieve,
            previews=not args.no_previews,
            prompt=not args.no_prompt,
        )
    except BackupError as e:
        logger.error(str(e))
        return 2
    except Exception as e:
        error_type = type(e).__name__
        logger.error(f"Unexpected error ({error_type}): {e}")
        logger.error("  Tip: Run 'camvault doctor' to check your configuration.")
        return 2

    for w in report.errors:
        logger.warning(f"Degraded: {w}")
    if report.degraded:
        return 1
    logger.info("All done")
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    try:
        cfg = _load(args)
    except ConfigError as e:
        print(f"[FAIL] config: {e}")
        return 2
    rc, results = run_doctor(cfg, min_free_gb=args.min_free_gb)
    print(format_results(results))
    return rc


def cmd_keyfile(args: argparse.Namespace) -> int:
    try:
        path = generate_keyfile(Path(args.path), length=args.length)
    except (ValueError, OSError) as e:
        print(f"Could not generate keyfile: {e}", file=sys.stderr)
        return 2
    print(f"Generated random string in {path}")
    return 0


def cmd_sudoers(args: argparse.Namespace) -> int:
    try:
        cfg = _load(args)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2
    print(sudoers_help(cfg, user=getpass.getuser()))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="camvault", description="Offload photos from a camera to layered backups")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Retrieve, back up, and create previews")
    _add_common_args(p_run)
    p_run.add_argument("--no-retrieve", action="store_true", help="Skip fetching new files from the camera")
    p_run.add_argument("--no-previews", action="store_true", help="Skip preview generation")
    p_run.add_argument("--no-prompt", action="store_true", help="Don't offer to open the first new preview")
    p_run.set_defaults(func=cmd_run)

    p_doc = sub.add_parser("doctor", help="Run environment checks (tools, volumes, keyfile, disk)")
    _add_common_args(p_doc)
    p_doc.add_argument("--min-free-gb", type=float, default=2.0, help="Minimum free disk space required")
    p_doc.set_defaults(func=cmd_doctor)

    p_key = sub.add_parser("keyfile", help="Generate a random VeraCrypt keyfile")
    p_key.add_argument("path", nargs="?", default="keyfile.txt", help="Output file (default: keyfile.txt)")
    p_key.add_argument("--length", type=int, default=160, help="Number of characters (default: 160)")
    p_key.set_defaults(func=cmd_keyfile)

    p_sudo = sub.add_parser("sudoers", help="Print requirements and the sudoers snippet")
    _add_common_args(p_sudo)
    p_sudo.set_defaults(func=cmd_sudoers)

    return p


def main(argv: list[str] | None = None) -> None:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)
    rc = args.func(args)
    raise SystemExit(rc)
