import argparse
import asyncio
import json
import signal
import sys
from dataclasses import asdict

from .audit import AuditLog
from .config import load_settings
from .coordinator import RolloutCoordinator
from .errors import ConfigurationError, RollbackError
from .executor import CommandExecutor, SimulatedExecutor
from .health import HealthProber
from .inventory import JsonFileInventory
from .planner import plan_batches
from .rollback import RollbackManager
from .logger import setup_logging, get_logger

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def build_executor(settings, config, deployment):
    logger = get_logger("cli")
    if settings.deploy_command:
        return CommandExecutor.from_config(
            config,
            deploy_command=settings.deploy_command,
            revert_command=settings.revert_command,
            deployment=deployment,
        )
    logger.warning("DEPLOY_COMMAND is not set, using the simulated executor")
    return SimulatedExecutor.from_config(config)


def save_snapshot(path, plan):
    snapshot = {
        t.target_id: {"previous_version": plan.previous_versions[t.target_id], "desired_version": plan.desired_version}
        for t in plan.targets
    }
    with open(path, "w") as f:
        json.dump(snapshot, f, indent=2)


def load_snapshot(path):
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"snapshot file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"snapshot file {path} is not valid JSON: {e}") from e


def resolve_versions(targets, version=None, snapshot=None):
    """Version each target goes back to: explicit --version wins over the snapshot"""
    if version:
        return version
    snapshot = snapshot or {}
    versions = {}
    missing = []
    for target in targets:
        entry = snapshot.get(target.target_id) or {}
        if entry.get("previous_version"):
            versions[target.target_id] = entry["previous_version"]
        else:
            missing.append(target.target_id)
    if missing:
        raise ConfigurationError(
            f"could not determine previous version for: {', '.join(missing)} (use --version=VERSION)"
        )
    return versions


def plan_to_dict(plan):
    return {
        "desired_version": plan.desired_version,
        "batch_size": plan.batch_size,
        "batches": [b.target_ids for b in plan.batches],
        "previous_versions": plan.previous_versions,
    }


async def run_rollout(coordinator, plan):
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
        except (NotImplementedError, RuntimeError):
            # No loop signal support on this platform; Ctrl-C aborts without rollback
            get_logger("cli").debug(f"Cannot install handler for {sig.name}")
    return await coordinator.execute(plan, cancel_event)


async def run_emergency_rollback(manager, batches, to_versions):
    """Roll back batch by batch, carrying on past a failed batch so every target is attempted"""
    reverted = []
    errors = {}
    for batch in batches:
        try:
            reverted.extend(await manager.rollback(batch.targets, to_versions))
        except RollbackError as e:
            reverted.extend(e.reverted)
            errors.update(e.errors)
    if errors:
        raise RollbackError(errors.keys(), errors, reverted)
    return reverted


def confirm(pattern, deployment, version):
    print(f"WARNING: This will rollback deployment '{deployment}'")
    print(f"Pattern: {pattern}")
    if version:
        print(f"Target version: {version}")
    try:
        answer = input("Are you sure you want to proceed? (yes/no): ")
    except EOFError:
        # stdin closed, nobody can say yes
        print()
        return False
    return answer.strip() == "yes"


def cmd_rollout(args):
    logger = get_logger("cli")
    try:
        settings = load_settings()
        inventory = JsonFileInventory(args.inventory or settings.rollout_inventory, settings.health_check_url)
        config = settings.to_config(args.batch_size)
        audit_log = AuditLog(args.audit_log) if args.audit_log else None
        coordinator = RolloutCoordinator(
            inventory, build_executor(settings, config, args.deployment), HealthProber(), config, audit_log
        )
        plan = coordinator.plan(args.version, args.batch_size)
    except ConfigurationError as e:
        logger.error(f"Rollout not started: {e}")
        print(f"Error: {e}")
        return 1

    if args.dry_run:
        logger.info(f"DRY RUN: would deploy {args.version} to {len(plan.targets)} targets")
        print(json.dumps(plan_to_dict(plan), indent=2))
        return 0

    save_snapshot(args.snapshot, plan)
    report = asyncio.run(run_rollout(coordinator, plan))
    inventory.save_targets(plan.targets)
    print(json.dumps(asdict(report), indent=2))

    if report.manual_intervention_required:
        print(f"MANUAL INTERVENTION REQUIRED for: {', '.join(report.manual_intervention_required)}")
    return 0 if report.succeeded else 1


def cmd_rollback(args):
    logger = get_logger("cli")
    try:
        overrides = {"health_check_url": args.health_url} if args.health_url else {}
        settings = load_settings(**overrides)
        inventory = JsonFileInventory(args.inventory or settings.rollout_inventory, settings.health_check_url)
        targets = inventory.list_targets()
        snapshot = None if args.version else load_snapshot(args.snapshot)
        to_versions = resolve_versions(targets, args.version, snapshot)
        batch_size = len(targets) if args.pattern == "big-bang" else args.batch_size
        batches = plan_batches(targets, batch_size)
    except ConfigurationError as e:
        logger.error(f"Rollback not started: {e}")
        print(f"Error: {e}")
        return 1

    logger.warning(f"Emergency rollback of '{args.deployment}' ({args.pattern}, {len(batches)} batches)")
    for batch in batches:
        for target in batch.targets:
            to_version = to_versions if isinstance(to_versions, str) else to_versions[target.target_id]
            print(f"  batch {batch.index}: {target.target_id} {target.current_version} -> {to_version}")

    if args.dry_run:
        logger.info("DRY RUN: no changes made")
        return 0

    if not args.force and not confirm(args.pattern, args.deployment, args.version):
        logger.info("Rollback cancelled")
        return 0

    config = settings.to_config(batch_size)
    manager = RollbackManager(
        build_executor(settings, config, args.deployment), HealthProber(), config.effective_rollback_probe
    )
    try:
        asyncio.run(run_emergency_rollback(manager, batches, to_versions))
    except RollbackError as e:
        logger.error(str(e))
        for target_id in e.manual_intervention_required:
            print(f"MANUAL INTERVENTION REQUIRED: {target_id}: {e.errors.get(target_id)}")
        if e.reverted:
            print(f"Rolled back: {', '.join(e.reverted)}")
        return 1
    finally:
        inventory.save_targets(targets)

    print("Rollback completed.")
    logger.warning(f"Monitor '{args.deployment}' closely for the next few minutes")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="rollout-controller", description="Rolling deployment controller")
    parser.add_argument("--log-level", default="INFO", type=str.upper, choices=LOG_LEVELS)
    sub = parser.add_subparsers(dest="cmd", required=True)

    rollout = sub.add_parser("rollout", help="Deploy a version batch by batch")
    rollout.add_argument("version")
    rollout.add_argument("batch_size", type=int)
    rollout.add_argument("--inventory", help="Inventory JSON file (default: $ROLLOUT_INVENTORY)")
    rollout.add_argument("--deployment", default="app", help="Name substituted into deploy commands")
    rollout.add_argument("--snapshot", default=".snapshot.json")
    rollout.add_argument("--audit-log")
    rollout.add_argument("--dry-run", action="store_true")

    rollback = sub.add_parser("rollback", help="Emergency rollback of a deployment")
    rollback.add_argument("pattern", choices=["big-bang", "rolling"])
    rollback.add_argument("deployment")
    rollback.add_argument("--force", action="store_true", help="Skip confirmation prompt")
    rollback.add_argument("--dry-run", action="store_true", help="Show what would be done without executing")
    rollback.add_argument("--version", help="Rollback every target to this version")
    rollback.add_argument("--health-url", help="Health check URL template")
    rollback.add_argument("--inventory")
    rollback.add_argument("--snapshot", default=".snapshot.json")
    rollback.add_argument("--batch-size", type=int, default=1, help="Batch size for the rolling pattern")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    if args.cmd == "rollout":
        sys.exit(cmd_rollout(args))
    if args.cmd == "rollback":
        sys.exit(cmd_rollback(args))


if __name__ == "__main__":
    main()
