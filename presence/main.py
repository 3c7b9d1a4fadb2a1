"""Command-line entrypoints for planning and applying partial updates."""
from __future__ import annotations

import argparse
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson
from dotenv import load_dotenv

from presence.config.settings import MergeSettings, build_engine, load_settings
from presence.errors import MergeError
from presence.observability.log import configure_logging
from presence.quality.quarantine import Quarantine
from presence.quality.validate import SchemaRegistry, SchemaValidator
from presence.records.partial import PartialRecord
from presence.records.schema import partial_model_from_schema
from presence.service import PatchService
from presence.storage.repository import JsonFileRepository, RecordNotFound

DEFAULT_SETTINGS = Path("config/settings.toml")
DEFAULT_LOGGING = Path("config/logging.yaml")


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="presence-merge", description="Presence-aware partial updates")
    sub = parser.add_subparsers(dest="command", required=True)

    plan = sub.add_parser("plan", help="Print the mutations a patch implies for an entity")
    apply = sub.add_parser("apply", help="Merge a patch into an entity file")
    for command in (plan, apply):
        command.add_argument("--schema", required=True, help="Entity JSON Schema")
        command.add_argument("--entity", required=True, help="Entity JSON document")
        command.add_argument("--patch", required=True, help="Partial update JSON document")
    apply.add_argument("--in-place", action="store_true", help="Write the merged entity back to --entity")

    patch = sub.add_parser("patch", help="Apply a patch to an entity stored in the repository")
    patch.add_argument("--type", required=True, help="Entity type (selects <type>.schema.json)")
    patch.add_argument("--key", required=True, help="Entity key")
    patch.add_argument("--patch", required=True, help="Partial update JSON document")

    rejects = sub.add_parser("inspect-rejects", help="Summarise quarantined patches")
    rejects.add_argument("--type", help="Restrict to one entity type")
    rejects.add_argument("--last", type=int, default=7, help="Lookback window in days")

    return parser


def _read_json(path: Path) -> Any:
    return orjson.loads(path.read_bytes())


def _partial_model(schema: Dict[str, Any]) -> type[PartialRecord]:
    title = str(schema.get("title") or "Entity").replace(" ", "")
    return partial_model_from_schema(schema, f"{title}Patch")


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def cmd_plan(args: argparse.Namespace, settings: MergeSettings) -> None:
    schema = _read_json(Path(args.schema))
    partial = _partial_model(schema).from_json(Path(args.patch).read_bytes())
    engine = build_engine(settings)
    _emit(engine.plan(_read_json(Path(args.entity)), partial).describe())


def cmd_apply(args: argparse.Namespace, settings: MergeSettings) -> None:
    schema = _read_json(Path(args.schema))
    partial = _partial_model(schema).from_json(Path(args.patch).read_bytes())
    engine = build_engine(settings, validator=SchemaValidator(schema))
    entity_path = Path(args.entity)
    result = engine.merge(_read_json(entity_path), partial)
    if args.in_place and result.mutated:
        entity_path.write_bytes(orjson.dumps(result.entity, option=orjson.OPT_INDENT_2))
    _emit({"entity": result.entity, "changed": result.changed})


def cmd_patch(args: argparse.Namespace, settings: MergeSettings) -> None:
    registry = SchemaRegistry(settings.paths.schemas_dir)
    schema = registry.load(args.type)
    partial = _partial_model(schema).from_json(Path(args.patch).read_bytes())
    service = PatchService(
        repository=JsonFileRepository(settings.paths.data_root),
        engine=build_engine(settings, validator=registry.validator(args.type)),
        quarantine=Quarantine(settings.paths.quarantine_dir),
    )
    run_id = datetime.utcnow().strftime("%Y%m%dT%H%M%S%f")
    try:
        result = service.apply_patch(args.type, args.key, partial)
    finally:
        service.metrics.export(path=settings.paths.metrics_dir / f"run_{run_id}.json", run_id=run_id)
    _emit({"key": args.key, "changed": result.changed, "committed": result.mutated})


def cmd_rejects(args: argparse.Namespace, settings: MergeSettings) -> None:
    quarantine = Quarantine(settings.paths.quarantine_dir)
    _emit(quarantine.summarise(entity_type=args.type, days=args.last))


COMMANDS = {
    "plan": cmd_plan,
    "apply": cmd_apply,
    "patch": cmd_patch,
    "inspect-rejects": cmd_rejects,
}


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    settings = load_settings(Path(os.environ.get("PRESENCE_SETTINGS", DEFAULT_SETTINGS)))
    configure_logging(DEFAULT_LOGGING)

    try:
        COMMANDS[args.command](args, settings)
    except MergeError as error:
        _emit(error.to_dict())
        raise SystemExit(1)
    except RecordNotFound as error:
        _emit({"error": "not_found", "message": str(error)})
        raise SystemExit(1)
    except ValueError as error:
        _emit({"error": "invalid_input", "message": str(error)})
        raise SystemExit(1)


if __name__ == "__main__":
    main()
