"""Dispatch CLI: command-line interface for the marketplace core.

Usage:
    python -m dispatch.cli status
    python -m dispatch.cli register-provider --id f1 --name "Ana" --height 182 \\
        --weight 84 --professional --years 6 --discipline mma --win-rate 7500 \\
        --lat 40.7128 --lng -74.0060
    python -m dispatch.cli create-mission --as client-1 --lat 40.71 --lng -74.0 \\
        --tier warrior --deposit 1000 --description "Event security"
    python -m dispatch.cli assign-nearest --as client-1 --mission 1
    python -m dispatch.cli complete --as f1 --mission 1
    python -m dispatch.cli check-invariants

Coordinates are given in decimal degrees and stored as integers scaled
by 10**6. DISPATCH_CONFIG_DIR and DISPATCH_DATA_DIR (environment or a
.env file) override the default config/ and data/ directories.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from dispatch.invariants import run_checks
from dispatch.models.location import to_fixed
from dispatch.models.provider import Discipline, ProviderAttributes, Tier
from dispatch.persistence.event_log import EventLog
from dispatch.persistence.state_store import StateStore
from dispatch.policy.resolver import PolicyResolver
from dispatch.service import DispatchService, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _make_service(args: argparse.Namespace) -> DispatchService:
    """Create a DispatchService with durable persistence."""
    data_dir: Path = args.data
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(args.config)
    event_log = EventLog(storage_path=data_dir / "events.jsonl")
    state_store = StateStore(storage_path=data_dir / "state.json")
    return DispatchService(
        resolver,
        event_log=event_log,
        state_store=state_store,
    )


def _report(result: ServiceResult, message: str) -> int:
    if result.success:
        print(message.format(**result.data))
        warning = result.data.get("warning")
        if warning:
            print(f"Warning: {warning}", file=sys.stderr)
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def _print_payouts(result: ServiceResult) -> None:
    if result.success:
        for p in result.data["payouts"]:
            print(f"  {p['reason']}: {p['amount']} -> {p['recipient_id']}")


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_register_provider(args: argparse.Namespace) -> int:
    service = _make_service(args)
    attributes = ProviderAttributes(
        provider_id=args.id,
        display_name=args.name,
        height_cm=args.height,
        weight_kg=args.weight,
        is_professional=args.professional,
        years_experience=args.years,
        discipline=Discipline(args.discipline),
        win_rate_bps=args.win_rate,
    )
    result = service.register_provider(attributes, to_fixed(args.lat), to_fixed(args.lng))
    return _report(result, "Registered provider: {provider_id} (tier: {tier})")


def cmd_update_location(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.update_location(
        args.caller, args.provider, to_fixed(args.lat), to_fixed(args.lng),
    )
    return _report(result, "Updated location of {provider_id}")


def cmd_suspend(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.suspend_provider(args.caller, args.provider, args.reason)
    return _report(result, "Provider {provider_id} is now {status}")


def cmd_reinstate(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.reinstate_provider(args.caller, args.provider)
    return _report(result, "Provider {provider_id} is now {status}")


def cmd_sweep_stale(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.sweep_stale_locations(args.caller, args.max_age)
    if result.success:
        print(f"Invalidated {len(result.data['invalidated'])} location(s)")
        for provider_id in result.data["invalidated"]:
            print(f"  {provider_id}")
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_create_mission(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.create_mission(
        client_id=args.caller,
        client_latitude=to_fixed(args.lat),
        client_longitude=to_fixed(args.lng),
        description=args.description,
        required_tier=Tier(args.tier),
        deposit_amount=args.deposit,
        location_hash=args.location_hash,
    )
    return _report(
        result,
        "Created mission: {mission_id} (fighter: {fighter_amount}, fee: {platform_fee})",
    )


def cmd_assign_nearest(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.assign_nearest(args.caller, args.mission)
    return _report(result, "Mission {mission_id} assigned to {provider_id}")


def cmd_assign(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.assign_specific(args.caller, args.mission, args.provider)
    return _report(result, "Mission {mission_id} assigned to {provider_id}")


def cmd_complete(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.complete(args.caller, args.mission)
    code = _report(result, "Mission {mission_id} completed")
    _print_payouts(result)
    return code


def cmd_dispute(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.signal_dispute(args.caller, args.mission)
    return _report(result, "Mission {mission_id} is now {state}")


def cmd_resolve_dispute(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.resolve_dispute(
        args.caller, args.mission, favor_client=(args.favor == "client"),
    )
    code = _report(result, "Mission {mission_id} resolved: {resolution}")
    _print_payouts(result)
    return code


def cmd_cancel(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.cancel(args.caller, args.mission)
    code = _report(result, "Mission {mission_id} cancelled")
    _print_payouts(result)
    return code


def cmd_show_mission(args: argparse.Namespace) -> int:
    service = _make_service(args)
    mission = service.get_mission(args.mission)
    if mission is None:
        print(f"Failed: Mission not found: {args.mission}", file=sys.stderr)
        return 1
    out: dict[str, Any] = asdict(mission)
    settlement = service.get_settlement(args.mission)
    if settlement is not None:
        out["settlement"] = asdict(settlement)
    print(json.dumps(out, indent=2, default=str))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run policy and ledger invariant checks."""
    errors = run_checks(args.config, args.data)
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1
    print("Invariant check passed.")
    return 0


def _add_caller(p: argparse.ArgumentParser) -> None:
    p.add_argument("--as", dest="caller", required=True, help="Acting identity")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dispatch",
        description="Fighter dispatch: escrowed missions and provider matching",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.environ.get("DISPATCH_CONFIG_DIR", DEFAULT_CONFIG)),
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=Path(os.environ.get("DISPATCH_DATA_DIR", DEFAULT_DATA)),
        help="Path to data directory (default: data/)",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show system status")

    # register-provider
    p_reg = sub.add_parser("register-provider", help="Register a provider")
    p_reg.add_argument("--id", required=True, help="Provider ID")
    p_reg.add_argument("--name", required=True, help="Display name")
    p_reg.add_argument("--height", type=int, required=True, help="Height in cm")
    p_reg.add_argument("--weight", type=int, required=True, help="Weight in kg")
    p_reg.add_argument("--professional", action="store_true", help="Professional record")
    p_reg.add_argument("--years", type=int, default=0, help="Years of experience")
    p_reg.add_argument(
        "--discipline", required=True,
        choices=[d.value for d in Discipline],
        help="Primary discipline",
    )
    p_reg.add_argument("--win-rate", type=int, default=0, help="Win rate, 0-10000 bps")
    p_reg.add_argument("--lat", type=float, required=True, help="Latitude (degrees)")
    p_reg.add_argument("--lng", type=float, required=True, help="Longitude (degrees)")

    # update-location
    p_loc = sub.add_parser("update-location", help="Report a provider position")
    _add_caller(p_loc)
    p_loc.add_argument("--provider", required=True, help="Provider ID")
    p_loc.add_argument("--lat", type=float, required=True, help="Latitude (degrees)")
    p_loc.add_argument("--lng", type=float, required=True, help="Longitude (degrees)")

    # suspend / reinstate
    p_sus = sub.add_parser("suspend", help="Suspend a provider (admin)")
    _add_caller(p_sus)
    p_sus.add_argument("--provider", required=True, help="Provider ID")
    p_sus.add_argument("--reason", default="", help="Suspension reason")

    p_rei = sub.add_parser("reinstate", help="Reinstate a suspended provider (admin)")
    _add_caller(p_rei)
    p_rei.add_argument("--provider", required=True, help="Provider ID")

    # sweep-stale
    p_swp = sub.add_parser("sweep-stale", help="Invalidate stale locations (admin)")
    _add_caller(p_swp)
    p_swp.add_argument(
        "--max-age", type=int, default=None,
        help="Maximum age in seconds (default: policy value)",
    )

    # create-mission
    p_create = sub.add_parser("create-mission", help="Escrow a deposit and open a mission")
    _add_caller(p_create)
    p_create.add_argument("--lat", type=float, required=True, help="Client latitude")
    p_create.add_argument("--lng", type=float, required=True, help="Client longitude")
    p_create.add_argument(
        "--tier", default=Tier.NOVICE.value,
        choices=[t.value for t in Tier],
        help="Minimum provider tier (default: novice)",
    )
    p_create.add_argument("--deposit", type=int, required=True, help="Deposit amount")
    p_create.add_argument("--description", default="", help="Job description")
    p_create.add_argument("--location-hash", help="Precomputed location commitment")

    # mission operations
    for name, help_text in (
        ("assign-nearest", "Assign the nearest eligible provider (client)"),
        ("complete", "Mark a mission completed (assigned provider)"),
        ("dispute", "Raise a dispute (client or assigned provider)"),
        ("cancel", "Cancel an unassigned mission (client)"),
    ):
        p = sub.add_parser(name, help=help_text)
        _add_caller(p)
        p.add_argument("--mission", type=int, required=True, help="Mission ID")

    p_assign = sub.add_parser("assign", help="Assign a chosen provider (client)")
    _add_caller(p_assign)
    p_assign.add_argument("--mission", type=int, required=True, help="Mission ID")
    p_assign.add_argument("--provider", required=True, help="Provider ID")

    p_res = sub.add_parser("resolve-dispute", help="Resolve a disputed mission (admin)")
    _add_caller(p_res)
    p_res.add_argument("--mission", type=int, required=True, help="Mission ID")
    p_res.add_argument("--favor", required=True, choices=["client", "provider"])

    p_show = sub.add_parser("show-mission", help="Print a mission and its settlement")
    p_show.add_argument("--mission", type=int, required=True, help="Mission ID")

    # check-invariants
    sub.add_parser("check-invariants", help="Run policy and ledger invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "register-provider": cmd_register_provider,
        "update-location": cmd_update_location,
        "suspend": cmd_suspend,
        "reinstate": cmd_reinstate,
        "sweep-stale": cmd_sweep_stale,
        "create-mission": cmd_create_mission,
        "assign-nearest": cmd_assign_nearest,
        "assign": cmd_assign,
        "complete": cmd_complete,
        "dispute": cmd_dispute,
        "resolve-dispute": cmd_resolve_dispute,
        "cancel": cmd_cancel,
        "show-mission": cmd_show_mission,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
