"""Logic expander CLI — command-line interface for the expansion pipeline."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="logic-expander",
        description="Expand and compress achievement condition logic",
    )

    # Global logging verbosity flags
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging output",
    )
    verbosity.add_argument(
        "--quiet", "-q", action="store_true",
        help="Suppress all output except warnings and errors",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    # process subcommand
    process_parser = subparsers.add_parser(
        "process",
        help="Load logic, apply profile expansions, generate and compress",
    )
    process_parser.add_argument(
        "--logic", required=True, help="Path to a file holding the logic blob"
    )
    process_parser.add_argument(
        "--profile", required=False, default=None,
        help="Path to the YAML generation profile",
    )
    process_parser.add_argument(
        "--output", required=False, default=None,
        help="Write the generated logic here instead of stdout",
    )

    # show subcommand
    show_parser = subparsers.add_parser(
        "show",
        help="List the parsed conditions and their link groups",
    )
    show_parser.add_argument(
        "--logic", required=True, help="Path to a file holding the logic blob"
    )

    # optimize subcommand
    optimize_parser = subparsers.add_parser(
        "optimize",
        help="Run bit compression and Remember/Recall on raw logic",
    )
    optimize_parser.add_argument(
        "--logic", required=True, help="Path to a file holding the logic blob"
    )
    optimize_parser.add_argument(
        "--no-bits", action="store_true", default=False,
        help="Skip the bit-compression pass",
    )
    optimize_parser.add_argument(
        "--no-rr", action="store_true", default=False,
        help="Skip the Remember/Recall pass",
    )
    optimize_parser.add_argument(
        "--output", required=False, default=None,
        help="Write the optimized logic here instead of stdout",
    )

    # validate subcommand
    validate_parser = subparsers.add_parser(
        "validate",
        help="Lint a logic blob",
    )
    validate_parser.add_argument(
        "--logic", required=True, help="Path to a file holding the logic blob"
    )

    return parser


def _emit(text: str, output: str | None) -> None:
    if output:
        path = Path(output)
        from . import write_logic

        write_logic(text, path)
        logger.info("Wrote logic to %s", path)
    else:
        print(text)


def cmd_process(args: argparse.Namespace) -> int:
    """Expand and compress a logic file according to a profile.

    Returns exit code (0 = success).
    """
    logic_path = Path(args.logic)
    if not logic_path.exists():
        logger.error("Logic file not found: %s", logic_path)
        return 1

    from . import read_logic
    from .profile import apply_profile_expansions, load_profile, new_session, validate_profile

    # 1. Load and validate profile
    profile = None
    if args.profile:
        profile_path = Path(args.profile)
        if not profile_path.exists():
            logger.error("Profile file not found: %s", profile_path)
            return 1
        profile = load_profile(profile_path)
        errors = validate_profile(profile)
        if errors:
            for err in errors:
                logger.error("Profile error: %s", err)
            return 1
        logger.info("Profile loaded: %s", profile.name)

    # 2. Parse logic
    session = new_session(profile)
    count = session.load(read_logic(logic_path))
    logger.info("Parsed %d conditions from %s", count, logic_path)

    # 3. Expansions
    if profile is not None:
        for warning in apply_profile_expansions(session, profile):
            logger.warning("Expansion skipped: %s", warning)

    # 4. Generate
    result = session.generate_logic(
        compress_bits=profile.compress_bits if profile else True,
        optimize_rr=profile.remember_recall if profile else True,
    )
    if result.bits_saved:
        logger.info("Bit compression saved %d line(s)", result.bits_saved)
    if result.rr is not None and result.rr.savings > 0:
        logger.info("Remember/Recall saved %d character(s)", result.rr.savings)

    _emit(result.logic, args.output)
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Log the parsed conditions grouped by link group.

    Returns exit code (0 = success).
    """
    logic_path = Path(args.logic)
    if not logic_path.exists():
        logger.error("Logic file not found: %s", logic_path)
        return 1

    from . import read_logic
    from .session import LogicSession

    session = LogicSession()
    session.load(read_logic(logic_path))
    rows = session.project_rows()
    logger.info("Conditions: %d", len(rows))
    for row in rows:
        marker = "*" if row.is_leader else " "
        logger.info("  %3d %s group %-3d %s", row.line_id, marker, row.group_id, row.text)
    return 0


def cmd_optimize(args: argparse.Namespace) -> int:
    """Compress a raw logic blob.

    Returns exit code (0 = success).
    """
    logic_path = Path(args.logic)
    if not logic_path.exists():
        logger.error("Logic file not found: %s", logic_path)
        return 1

    from . import read_logic
    from .bit_compression import compress_bits
    from .grammar import serialize_logic, split_logic
    from .remember_recall import apply_rr_optimization

    logic = read_logic(logic_path)
    original_length = len(logic)

    if not args.no_bits:
        lines = split_logic(logic)
        compressed = compress_bits(lines)
        logger.info("Bit compression: %d -> %d lines", len(lines), len(compressed))
        logic = serialize_logic(compressed)

    if not args.no_rr:
        rr = apply_rr_optimization(logic)
        if rr.savings > 0:
            logger.info(
                "Remember/Recall: %d-line pattern x %d, saved %d characters",
                len(rr.pattern.lines), rr.pattern.count, rr.savings,
            )
            logic = rr.optimized_logic
        else:
            logger.info("Remember/Recall: no saving")

    logger.info("Length: %d -> %d characters", original_length, len(logic))
    _emit(logic, args.output)
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Run the lint suite on a logic file.

    Returns exit code (0 = no errors).
    """
    logic_path = Path(args.logic)
    if not logic_path.exists():
        logger.error("Logic file not found: %s", logic_path)
        return 1

    from . import read_logic
    from .qa import run_validation_suite

    report = run_validation_suite(read_logic(logic_path))
    logger.info("Validation: %d checks run on %d lines", len(report.checks_run), report.total_lines)
    logger.info("  Errors:   %d", report.error_count)
    logger.info("  Warnings: %d", report.warning_count)
    logger.info("  Passed:   %s", report.passed)

    if report.issues:
        logger.info("Issues:")
        for issue in report.issues:
            logger.info("  [%s] %s: %s (line: %d)", issue.severity, issue.check, issue.message, issue.line)

    return 0 if report.passed else 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # Return the exit code from argparse (0 for --help, 2 for errors)
        return e.code if isinstance(e.code, int) else 1

    # Configure root logger based on verbosity flags
    if getattr(args, "verbose", False):
        log_level = logging.DEBUG
    elif getattr(args, "quiet", False):
        log_level = logging.WARNING
    else:
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(levelname)s: %(message)s",
    )

    command_handlers = {
        "process": cmd_process,
        "show": cmd_show,
        "optimize": cmd_optimize,
        "validate": cmd_validate,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except Exception as e:
        logger.error("%s", e)
        return 1
