"""CLI entrypoint for building compliance checks."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from building_compliance.common.config_loader import load_config
from building_compliance.common.constants import COMMANDS, EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS
from building_compliance.common.errors import ComplianceError
from building_compliance.common.fs import read_lines, write_json
from building_compliance.common.http import HttpClient
from building_compliance.common.ids import generate_run_id
from building_compliance.common.logging import build_logger, log_event
from building_compliance.common.models import BuildingIdentity
from building_compliance.pipeline.service import ComplianceService, build_service, fetch_capability

NEEDS_TARGET = {"resolve", "check", "invalidate", "force-refresh"}


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("target", nargs="?", default=None, help="address, or building id for admin commands")
    parser.add_argument("--borough", default=None)
    parser.add_argument("--unit-count", type=int, default=None)
    parser.add_argument("--property-key", default=None)
    parser.add_argument("--addresses-file", default=None)
    parser.add_argument("--reverify", action="store_true")
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--data-dir", default="./data")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARN", "ERROR"])
    parser.add_argument("--strict", action="store_true")
    args = parser.parse_args(argv)
    if args.command in NEEDS_TARGET and not args.target:
        parser.error(f"{args.command} requires a target")
    if args.command == "portfolio" and not args.addresses_file:
        parser.error("portfolio requires --addresses-file")
    return args


def emit(payload: dict) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, sort_keys=True) + "\n")


def _resolve_kwargs(args: argparse.Namespace) -> dict:
    return {
        "borough": args.borough,
        "unit_count": args.unit_count,
        "property_key_override": args.property_key,
    }


def run_portfolio(service: ComplianceService, args: argparse.Namespace, data_dir: Path, run_id: str) -> int:
    logger = service.logger
    identities: list[BuildingIdentity] = []
    unresolved: dict[str, str] = {}
    for raw_address in read_lines(Path(args.addresses_file)):
        try:
            identities.append(service.resolve_address(raw_address, borough=args.borough))
        except ComplianceError as exc:
            unresolved[raw_address] = exc.error_code
            log_event(
                logger,
                f"could not resolve {raw_address!r}",
                run_id=run_id,
                stage="resolve",
                event="RESOLVE_FAIL",
                status="error",
                error_code=exc.error_code,
            )
            if args.strict:
                return EXIT_HARD_FAIL

    refresh = service.refresh_portfolio(identities)
    summary = service.summarize(refresh.snapshots.values())
    report = {
        "run_id": run_id,
        "summary": summary.to_dict(),
        "unresolved": dict(sorted(unresolved.items())),
        "refresh_errors": dict(sorted(refresh.errors.items())),
    }
    write_json(data_dir / "out" / "reports" / "portfolio_summary.json", report)
    emit(report)

    if unresolved or refresh.errors or summary.stale_building_ids:
        return EXIT_HARD_FAIL if args.strict else EXIT_PARTIAL
    return EXIT_SUCCESS


def execute_command(service: ComplianceService, args: argparse.Namespace, data_dir: Path, run_id: str) -> int:
    if args.command == "resolve":
        emit(service.resolve_address(args.target, **_resolve_kwargs(args)).to_dict())
        return EXIT_SUCCESS
    if args.command == "check":
        snapshot = service.check_address(args.target, **_resolve_kwargs(args))
        write_json(data_dir / "out" / "snapshots" / f"{snapshot.building_id}.json", snapshot.to_dict())
        emit(snapshot.to_dict())
        return EXIT_PARTIAL if snapshot.stale else EXIT_SUCCESS
    if args.command == "portfolio":
        return run_portfolio(service, args, data_dir, run_id)
    if args.command == "invalidate":
        removed = service.invalidate(args.target)
        emit({"building_id": args.target, "invalidated": removed})
        return EXIT_SUCCESS
    if args.command == "force-refresh":
        snapshot = service.force_refresh(args.target, reverify=args.reverify)
        emit(snapshot.to_dict())
        return EXIT_PARTIAL if snapshot.stale else EXIT_SUCCESS
    raise ValueError(f"Unknown command: {args.command}")


def run_command(args: argparse.Namespace) -> int:
    run_id = args.run_id or generate_run_id()
    config_dir = Path(args.config_dir)
    overlay_config_dir = Path(args.overlay_config_dir) if args.overlay_config_dir else None
    data_dir = Path(args.data_dir)

    logger = build_logger(run_id, data_dir=data_dir, level=args.log_level)
    bundle = load_config(config_dir, overlay_config_dir=overlay_config_dir)

    log_event(logger, "command start", run_id=run_id, stage=args.command, event="COMMAND_START", status="ok")
    with HttpClient() as client:
        service = build_service(
            bundle,
            fetch_capability(bundle, client),
            state_dir=data_dir / "state",
            logger=logger,
        )
        try:
            exit_code = execute_command(service, args, data_dir, run_id)
        except ComplianceError as exc:
            log_event(
                logger,
                f"{args.command} failed: {exc}",
                run_id=run_id,
                stage=args.command,
                event="COMMAND_FAIL",
                status="error",
                error_code=exc.error_code,
            )
            return EXIT_HARD_FAIL
    log_event(logger, "command end", run_id=run_id, stage=args.command, event="COMMAND_END", status="ok")
    return exit_code


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    try:
        return run_command(args)
    except ComplianceError:
        return EXIT_HARD_FAIL
    except Exception:
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
