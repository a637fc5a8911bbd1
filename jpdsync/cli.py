"""Command-line entry point: `jpdsync run | validate | serve`"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from jpdsync.config import Settings, settings as default_settings
from jpdsync.errors import ConfigurationError, ValidationFailedError
from jpdsync.models.sync_config import SyncDirection
from jpdsync.services.validator import format_validation_report

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 2


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jpdsync", description="Sync Jira Product Discovery issues with GitLab")
    parser.add_argument("--config", help="Path to the sync YAML (default: SYNC_CONFIG_PATH)")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one bounded sync pass")
    run.add_argument("--dry-run", action="store_true", help="Decide everything, write nothing")
    run.add_argument(
        "--direction",
        choices=[d.value for d in SyncDirection],
        help="Override sync.direction from the config",
    )
    run.add_argument("--json", action="store_true", help="Print the full run report as JSON")

    sub.add_parser("validate", help="Check configured JPD fields against sample issues")
    sub.add_parser("serve", help="Start the webhook receiver and poll scheduler")
    return parser


def _settings_for(args: argparse.Namespace, base: Settings) -> Settings:
    update = {}
    if args.config:
        update["sync_config_path"] = args.config
    if args.log_level:
        update["log_level"] = args.log_level
    if getattr(args, "dry_run", False):
        update["dry_run"] = True
    return base.model_copy(update=update) if update else base


def _print_run_summary(result) -> None:
    mode = " (dry run)" if result.dry_run else ""
    print(f"Sync finished{mode}")
    for name, part in (
        ("JPD -> GitLab", result.source_to_target),
        ("GitLab -> JPD status", result.target_to_source),
        ("GitLab -> JPD creation", result.source_creation),
        ("Comments", result.comments),
    ):
        if part is None:
            continue
        counts = ", ".join(f"{k}={v}" for k, v in part.summary().items())
        print(f"  {name}: {counts}")
        for err in part.errors[:3]:
            print(f"    {err.id}: {err.message}")
        if len(part.errors) > 3:
            print(f"    ... and {len(part.errors) - 3} more (see log)")


def main(argv: Optional[List[str]] = None, base_settings: Optional[Settings] = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = _settings_for(args, base_settings or default_settings)
    _configure_logging(settings.log_level)

    from jpdsync.services.sync_service import build_engine

    try:
        if args.command == "run":
            engine = build_engine(settings, dry_run=settings.dry_run, direction=args.direction)
            result = engine.run()
            if args.json:
                print(json.dumps(result.to_dict(), indent=2, default=str))
            else:
                _print_run_summary(result)
            return EXIT_OK

        if args.command == "validate":
            engine = build_engine(settings, dry_run=True)
            engine.validate()
            print("Field validation passed")
            return EXIT_OK

        import uvicorn

        uvicorn.run(
            "jpdsync.main:app",
            host=settings.host,
            port=settings.port,
            reload=False,
            log_level=settings.log_level.lower(),
        )
        return EXIT_OK
    except ValidationFailedError as e:
        print(format_validation_report(e.result), file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
