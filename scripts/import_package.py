#!/usr/bin/env python3
"""Import a metadata package into the configured database.

Usage:
  python scripts/import_package.py PACKAGE.zip [--start-position N | --start-guid GUID] \
      [--update-type-definition true|false] [--transforms JSON] [--transformers JSON] \
      [--user NAME] [--create-schema]

Exit status is 0 for SUCCESS, 3 for PARTIAL_SUCCESS or FAIL and 1 for errors.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import socket
from pathlib import Path
import sys

# Ensure src is on the import path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from Metaport.config import load_settings  # type: ignore
from Metaport.db import create_schema, get_sessionmaker  # type: ignore
from Metaport.errors import ImporterError  # type: ignore
from Metaport.identity import ActorIdentity  # type: ignore
from Metaport.importer import ImportService  # type: ignore
from Metaport.logging import redact_settings, setup_logging  # type: ignore
from Metaport.result import OperationStatus  # type: ignore
from Metaport.stores import SqlAuditSink, SqlEntityPersister, SqlTypeDefStore  # type: ignore


def _build_request(args: argparse.Namespace) -> dict:
    options: dict[str, str] = {}
    if args.update_type_definition is not None:
        options["updateTypeDefinition"] = args.update_type_definition
    if args.transforms:
        options["transforms"] = args.transforms
    if args.transformers:
        options["transformers"] = args.transformers
    request: dict = {"fileName": str(args.package), "options": options}
    if args.start_position is not None:
        request["startPosition"] = args.start_position
    if args.start_guid is not None:
        request["startGuid"] = args.start_guid
    return request


async def _run(args: argparse.Namespace) -> int:
    settings = load_settings()
    setup_logging(settings)
    if args.create_schema:
        await create_schema()

    sm = get_sessionmaker()
    service = ImportService(
        SqlTypeDefStore(sm),
        SqlEntityPersister(sm),
        SqlAuditSink.from_settings(settings, sm),
        settings=settings,
    )
    identity = ActorIdentity(user=args.user, host=socket.gethostname(), client_address="cli")
    result = await service.run_file(_build_request(args), identity)

    print("=== Import Summary ===")
    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if result.status is OperationStatus.SUCCESS else 3


def main() -> int:
    ap = argparse.ArgumentParser(description="Import a metadata package")
    ap.add_argument("package", type=Path)
    anchor = ap.add_mutually_exclusive_group()
    anchor.add_argument("--start-position", type=int)
    anchor.add_argument("--start-guid")
    ap.add_argument("--update-type-definition", choices=["true", "false"])
    ap.add_argument("--transforms", help="JSON object: {typeName: {attribute: [rules]}}")
    ap.add_argument("--transformers", help="JSON list of handler specs")
    ap.add_argument("--user", default="metaport-cli")
    ap.add_argument("--create-schema", action="store_true", help="create tables before importing")
    ap.add_argument("--show-settings", action="store_true")
    args = ap.parse_args()

    if args.show_settings:
        print(json.dumps(redact_settings(load_settings()), indent=2, default=str))

    try:
        return asyncio.run(_run(args))
    except ImporterError as exc:
        print(f"ImporterError [{exc.kind.value}]: {exc}")
        return 1
    except Exception as exc:
        print(f"Unexpected error: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
