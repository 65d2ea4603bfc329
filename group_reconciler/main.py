# group_reconciler/main.py
"""CLI: plan, apply, import and destroy managed Coder groups.

Each subcommand builds the same runtime context (config, client, controller,
state file) and routes to the :class:`Planner`.
"""
from __future__ import annotations

import argparse
import sys
from typing import Iterable, Optional, Tuple

from .core.coder_client import ClientOptions, CoderClient, HttpError
from .core.config import Config, ConfigError
from .core.errors import ReconcileError, RemoteOperationError
from .core.logging_utils import get_logger, setup_logging
from .core.state import StateError, StateStore
from .reconcile.controller import GroupController
from .reconcile.planner import Planner, RunResult
from .utils.reporting import print_rows
from .utils.validators import ValidationError

EXIT_OK = 0
EXIT_GENERIC_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_VALIDATION_ERROR = 3
EXIT_NETWORK_ERROR = 4
EXIT_RECONCILE_ERROR = 5

log = get_logger(__name__)


def _prepare_context(args) -> Tuple[Config, Planner]:
    """Resolve environment/config and return the configured planner."""
    cfg = Config.from_env(groups_file=args.groups_file, state_file=args.state_file)

    client = CoderClient(
        cfg.coder_url,
        cfg.session_token,
        options=ClientOptions(timeout_sec=cfg.timeout_sec),
        verify=not args.no_verify,
    )
    controller = GroupController(client, default_organization_id=cfg.default_organization_id)
    store = StateStore.load(cfg.state_file)
    return cfg, Planner(controller, store)


def cmd_plan(args) -> RunResult:
    cfg, planner = _prepare_context(args)
    items = planner.plan(cfg.load_groups())
    return planner.apply(items, dry_run=True)


def cmd_apply(args) -> RunResult:
    cfg, planner = _prepare_context(args)
    items = planner.plan(cfg.load_groups())
    return planner.apply(items, dry_run=args.dry_run)


def cmd_import(args) -> RunResult:
    cfg, planner = _prepare_context(args)
    return planner.import_group(args.key, args.identifier, cfg.load_groups())


def cmd_destroy(args) -> RunResult:
    _, planner = _prepare_context(args)
    return planner.destroy(args.keys or None)


def run_command(args) -> int:
    """Run the selected subcommand and map failures to exit codes."""
    try:
        result = args.func(args)
        print_rows(result.rows, args.format)
        if result.any_error:
            log.error("One or more operations failed; see rows above.")
            return EXIT_RECONCILE_ERROR
        return EXIT_OK
    except (ConfigError, StateError) as exc:
        log.error("Configuration error: %s", exc)
        return EXIT_CONFIG_ERROR
    except ValidationError as exc:
        log.error("Validation error: %s", exc)
        return EXIT_VALIDATION_ERROR
    except RemoteOperationError as exc:
        log.error("Remote error during %s: %s", exc.operation, exc)
        return EXIT_NETWORK_ERROR
    except HttpError as exc:
        log.error("Network/HTTP error: %s", exc)
        return EXIT_NETWORK_ERROR
    except ReconcileError as exc:
        log.error("%s: %s", type(exc).__name__, exc)
        return EXIT_RECONCILE_ERROR
    except Exception as exc:  # pragma: no cover - safety net
        log.exception("Unexpected error: %s", exc)
        return EXIT_GENERIC_ERROR


# ---------------------------- Argument parser -------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="group-reconciler", description="Declarative Coder group management")
    parser.add_argument("--groups-file", help="(Optional) Fallback if GROUPS_FILE is not set in the environment")
    parser.add_argument("--state-file", help="(Optional) Fallback if GROUPS_STATE_FILE is not set in the environment")
    parser.add_argument("--no-verify", action="store_true", help="Disable TLS verification")
    parser.add_argument("--format", choices=["table", "json"], default="table", help="Output format")
    parser.add_argument("--log-level", default=None, help="Console log level (INFO..CRITICAL)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    sp = subparsers.add_parser("plan", help="Show what apply would change")
    sp.set_defaults(func=cmd_plan)

    sp = subparsers.add_parser("apply", help="Converge remote groups to the groups file")
    sp.add_argument("--dry-run", action="store_true", help="Dry run mode, no changes made")
    sp.set_defaults(func=cmd_apply)

    sp = subparsers.add_parser("import", help="Adopt an existing group into the state file")
    sp.add_argument("key", help="Key of the group in the groups file")
    sp.add_argument("identifier", help="Group UUID or <organization-name>/<group-name>")
    sp.set_defaults(func=cmd_import)

    sp = subparsers.add_parser("destroy", help="Delete managed groups")
    sp.add_argument("keys", nargs="*", help="Keys to delete (default: all managed groups)")
    sp.set_defaults(func=cmd_destroy)

    return parser


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    setup_logging(args.log_level, action=args.command)
    return run_command(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
