"""Voice Notify device source command-line interface."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

import uvicorn
from rich.console import Console
from rich.table import Table

from voicenotify.bonded import BluezBondedDeviceSource, StaticBondedDeviceSource
from voicenotify.config import Settings
from voicenotify.database import StoreLifecycleManager
from voicenotify.exceptions import VoiceNotifyError
from voicenotify.models.device import DeviceRecord
from voicenotify.repository import BluetoothDeviceRepository


def _render_devices(records: List[DeviceRecord], *, as_json: bool, console: Console) -> None:
	data = [record.to_dict() for record in records]
	if as_json:
		json.dump(data, sys.stdout, indent=2)
		sys.stdout.write("\n")
		return
	table = Table(title="Notification Sources", show_lines=False)
	for column in ("address", "name", "enabled"):
		table.add_column(column.upper())
	for entry in data:
		table.add_row(
			"(wired)" if entry["wired"] else str(entry["address"]),
			str(entry["name"]),
			"yes" if entry["enabled"] else "no",
		)
	console.print(table)


async def _cmd_list(args: argparse.Namespace, repository: BluetoothDeviceRepository) -> int:
	records = await repository.current_devices(enabled_only=args.enabled)
	_render_devices(records, as_json=args.json, console=Console())
	return 0


async def _cmd_sync(args: argparse.Namespace, repository: BluetoothDeviceRepository) -> int:
	if args.snapshot:
		source = StaticBondedDeviceSource.from_json(args.snapshot)
	else:
		source = BluezBondedDeviceSource(adapter=args.adapter)
	report = await repository.sync(source)
	payload: Dict[str, Any] = report.to_dict()
	if args.json:
		json.dump(payload, sys.stdout, indent=2)
		sys.stdout.write("\n")
		return 0
	console = Console()
	if report.skipped_reason:
		console.print(f"[yellow]Bluetooth sync skipped:[/yellow] {report.skipped_reason}")
	console.print(
		f"added {len(report.inserted)}, removed {len(report.removed)}, renamed {len(report.renamed)}"
	)
	return 0


async def _cmd_toggle(args: argparse.Namespace, repository: BluetoothDeviceRepository) -> int:
	if not await repository.toggle_device(args.address):
		sys.stderr.write(f"unknown device: {args.address}\n")
		return 1
	record = await repository.get_device(args.address)
	if record is not None:
		state = "enabled" if record.enabled else "disabled"
		sys.stdout.write(f"{record.name} ({record.address}) {state}\n")
	return 0


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="Voice Notify notification source utilities")
	parser.add_argument("--db", help="SQLAlchemy database URL (default: $VOICENOTIFY_DATABASE_URL)")
	parser.add_argument("--timeout", type=float, help="Seconds to wait for the device store")
	parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
	sub = parser.add_subparsers(dest="command", required=True)

	list_cmd = sub.add_parser("list", help="Show stored notification sources")
	list_cmd.add_argument("--enabled", action="store_true", help="Only enabled sources")
	list_cmd.add_argument("--json", action="store_true", help="Output JSON")
	list_cmd.set_defaults(handler=_cmd_list)

	sync = sub.add_parser("sync", help="Reconcile sources with bonded Bluetooth devices")
	sync.add_argument("--snapshot", help="JSON list of {address, name} to use instead of BlueZ")
	sync.add_argument("--adapter", help="BlueZ adapter name, e.g. hci0")
	sync.add_argument("--json", action="store_true", help="Output JSON")
	sync.set_defaults(handler=_cmd_sync)

	toggle = sub.add_parser("toggle", help="Enable or disable a notification source")
	toggle.add_argument("address", help="Device address (__WIRED_DEVICES__ for wired)")
	toggle.set_defaults(handler=_cmd_toggle)

	serve = sub.add_parser("serve", help="Run the HTTP API")
	serve.add_argument("--host", default="127.0.0.1", help="Bind address")
	serve.add_argument("--port", type=int, default=8000, help="Bind port")
	serve.add_argument("--reload", action="store_true", help="Reload on code changes")
	serve.set_defaults(handler=None)

	return parser


async def _run(args: argparse.Namespace, settings: Settings) -> int:
	manager = StoreLifecycleManager.from_settings(settings)
	repository = BluetoothDeviceRepository(manager, settings=settings)
	try:
		return await args.handler(args, repository)
	finally:
		manager.close_db()


def _serve(args: argparse.Namespace, settings: Settings) -> int:
	# the API builds its own manager from the environment
	os.environ["VOICENOTIFY_DATABASE_URL"] = settings.database_url
	os.environ["VOICENOTIFY_STORE_TIMEOUT"] = str(settings.store_timeout)
	uvicorn.run("voicenotify.api:app", host=args.host, port=args.port, reload=args.reload)
	return 0


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	logging.basicConfig(
		level=logging.DEBUG if args.verbose else logging.WARNING,
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	try:
		settings = Settings.from_env().with_overrides(database_url=args.db, store_timeout=args.timeout)
		if args.command == "serve":
			return _serve(args, settings)
		return asyncio.run(_run(args, settings))
	except (ValueError, OSError) as exc:
		parser.error(str(exc))
	except VoiceNotifyError as exc:
		sys.stderr.write(f"error: {exc}\n")
		return 2


if __name__ == "__main__":
	sys.exit(main())
