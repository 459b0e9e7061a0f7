"""CLI entrypoint for the generic worker host.

Commands:
- `run`: sync deployed workflows, serve them until SIGINT/SIGTERM
- `list-deployments`: show deployed workflow names and their latest versions
- `deploy`: publish a workflow directory to the artifact store
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from temporal_generic_worker import __version__
from temporal_generic_worker.deployment.artifact_store import ArtifactStore
from temporal_generic_worker.errors import WorkerRuntimeError
from temporal_generic_worker.models import TriggerKind, TriggerSpec, WorkflowMetadata
from temporal_generic_worker.runtime.config import WorkerSettings
from temporal_generic_worker.runtime.context import RuntimeContext
from temporal_generic_worker.runtime.logging import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="temporal-generic-worker",
        description="Run Temporal workers for workflows deployed to an artifact store",
    )
    parser.add_argument(
        "--version", action="version", version=f"temporal-generic-worker {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Sync deployed workflows and run their workers and triggers")

    subparsers.add_parser(
        "list-deployments", help="List deployed workflows and their latest versions (JSON)"
    )

    deploy = subparsers.add_parser("deploy", help="Publish a workflow directory as a new version")
    deploy.add_argument(
        "--source",
        required=True,
        help="Directory containing workflow.py (and optionally activities.py)",
    )
    deploy.add_argument("--name", required=True, help="Workflow name (the @workflow.defn name)")
    deploy.add_argument("--version", dest="workflow_version", required=True, help="Version label")
    deploy.add_argument("--task-queue", required=True, help="Task queue the workflow runs on")
    deploy.add_argument("--namespace", default="default", help="Temporal namespace")
    deploy.add_argument(
        "--trigger-file",
        default=None,
        help='JSON file with the trigger, e.g. {"type": "webhook", "config": {"path": "/orders"}}',
    )
    deploy.add_argument("--deployed-by", default=None, help="Recorded in metadata.json")

    return parser


async def _run(settings: WorkerSettings) -> None:
    context = RuntimeContext.from_settings(settings)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops; Ctrl+C still raises KeyboardInterrupt there.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    try:
        await context.start()
        await stop.wait()
        logger.info("Shutdown requested")
    finally:
        await context.shutdown()


async def _list_deployments(store: ArtifactStore) -> list[dict[str, Any]]:
    names = await store.list_names()
    return [{"name": name, "latest": await store.get_latest_version(name)} for name in names]


def _load_trigger(path: str | None) -> TriggerSpec:
    if path is None:
        return TriggerSpec(kind=TriggerKind.MANUAL)
    return TriggerSpec.model_validate(json.loads(Path(path).read_text(encoding="utf-8")))


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = WorkerSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "run":
            asyncio.run(_run(settings))
            return 0

        if args.command == "list-deployments":
            store = ArtifactStore.from_settings(settings)
            deployments = asyncio.run(_list_deployments(store))
            print(json.dumps(deployments, indent=2))
            return 0

        if args.command == "deploy":
            metadata = WorkflowMetadata(
                name=args.name,
                version=args.workflow_version,
                namespace=args.namespace,
                task_queue=args.task_queue,
                trigger=_load_trigger(args.trigger_file),
                deployed_by=args.deployed_by,
            )
            store = ArtifactStore.from_settings(settings)
            published = asyncio.run(store.publish(Path(args.source), metadata))
            print(json.dumps(published.to_json(), indent=2))
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except (ValidationError, WorkerRuntimeError) as e:
        logger.error(str(e), extra={"command": args.command})
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
