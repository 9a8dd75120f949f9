from __future__ import annotations

import argparse
import sys
from dataclasses import replace

from .alerts import notify_run
from .db import EventLog
from .docker_ops import DockerDriver
from .driver import ServiceDriver
from .errors import CycleError, InvalidDeclaration
from .orchestrator import Orchestrator
from .providers import ProviderRegistry, SecretProvider
from .report import render_json, render_text
from .resolver import resolve
from .runtime import RunResult
from .settings import Settings
from .store import DeclarationStore

EXIT_SUCCEEDED = 0
EXIT_FAILED = 1
EXIT_PARTIALLY_FAILED = 3
EXIT_INVALID_INPUT = 4

EXIT_CODES = {
    RunResult.SUCCEEDED: EXIT_SUCCEEDED,
    RunResult.FAILED: EXIT_FAILED,
    RunResult.PARTIALLY_FAILED: EXIT_PARTIALLY_FAILED,
}


def build_driver(unit: str, settings: Settings, events: EventLog) -> ServiceDriver:
    return DockerDriver(
        unit=unit,
        network_prefix=settings.docker_network_prefix,
        events=events,
        timeout_s=settings.call_timeout_s,
    )


def build_provider(settings: Settings) -> SecretProvider:
    return ProviderRegistry.from_settings(settings)


def parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="deploy", description="Bring up a stack of dependent services in order")
    p.add_argument("--dry-run", action="store_true", help="Validate and print the plan; change nothing")
    p.add_argument("--target", metavar="UNIT", help="Deployment unit to apply (default: the only one declared)")
    p.add_argument("--file", metavar="PATH", help="Manifest file or directory (default: $SDO_MANIFEST or deploy.yaml)")
    p.add_argument("--json", action="store_true", help="Print the run as JSON instead of a table")
    p.add_argument("--parallel", action="store_true", help="Apply independent services of a level concurrently")
    p.add_argument("--run-timeout", type=float, metavar="SECONDS", help="Bound on the whole run")
    p.add_argument("--db", metavar="PATH", help="Event database path ('' disables it)")
    p.add_argument("--quiet", action="store_true", help="Do not print progress events")
    return p


def main(argv: list[str] | None = None) -> int:
    args = parser().parse_args(argv)

    settings = Settings()
    if args.file:
        settings = replace(settings, manifest_path=args.file)
    if args.db is not None:
        settings = replace(settings, db_path=args.db)

    events = EventLog(settings.db_path or None, echo=None if args.quiet else sys.stderr)

    try:
        store = DeclarationStore.load(settings.manifest_path)
        unit, declarations = store.get(args.target or settings.default_unit)
        plan = resolve(declarations, unit=unit)
    except CycleError as e:
        events.error(f"invalid input: {e}")
        print(f"error: {e} (members: {', '.join(e.members)})", file=sys.stderr)
        return EXIT_INVALID_INPUT
    except InvalidDeclaration as e:
        events.error(f"invalid input: {e}")
        print(f"error: {e}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    orch = Orchestrator(
        driver=build_driver(unit, settings, events.bind(unit)),
        provider=build_provider(settings),
        settings=settings,
        events=events,
        parallel=args.parallel,
        run_timeout_s=args.run_timeout,
    )
    run = orch.run(plan, dry_run=args.dry_run)

    print(render_json(run) if args.json else render_text(run))
    if not run.dry_run and notify_run(settings, run):
        events.bind(unit).info("Sent run notification email")
    return EXIT_CODES[run.result]


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
