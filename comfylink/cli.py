"""comfylink command line.

Usage:
    comfylink watch [identity] [--register]
    comfylink submit <workflow.json> [--client-id ID]
    comfylink interrupt | clear | stats [--client-id ID]
    comfylink upload <file> [--type input] [--overwrite] [--client-id ID]
    comfylink view-url <filename> [--subfolder S] [--type output]

Without --client-id, commands use the identity persisted by the last
successful `watch`.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Iterable

from comfylink.accounts import FolderAccountDirectory
from comfylink.client import ComfyClient
from comfylink.config import ComfyConfig, load_env
from comfylink.errors import AccountExistsError, CommandError
from comfylink.identity import SqliteIdentityStore
from comfylink.session import PHASE_CLOSED, PHASE_OPEN, SessionSnapshot, SessionStore

log = logging.getLogger("comfylink.cli")


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def _parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="comfylink", description="ComfyUI session client")
    parser.add_argument("--base-url", help="Gateway base URL (default: $COMFYLINK_BASE_URL)")
    parser.add_argument("--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Connect and log session events")
    watch.add_argument("identity", nargs="?")
    watch.add_argument("--register", action="store_true", help="Create the account first")

    submit = sub.add_parser("submit", help="Queue a workflow (API format JSON)")
    submit.add_argument("workflow", type=Path)
    submit.add_argument("--client-id")

    for name, help_text in (
        ("interrupt", "Stop the running prompt"),
        ("clear", "Clear pending prompts"),
        ("stats", "Show backend system stats"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--client-id")

    upload = sub.add_parser("upload", help="Upload an input image")
    upload.add_argument("file", type=Path)
    upload.add_argument("--type", default="input")
    upload.add_argument("--overwrite", action="store_true")
    upload.add_argument("--client-id")

    view = sub.add_parser("view-url", help="Print the retrieval URL for an image")
    view.add_argument("filename")
    view.add_argument("--subfolder", default="")
    view.add_argument("--type", default="output")

    return parser.parse_args(list(argv))


def _describe(snap: SessionSnapshot) -> str:
    parts = [f"phase={snap.phase}", f"queue={snap.queue_remaining}"]
    if snap.current_job_id:
        parts.append(f"job={snap.current_job_id}")
    if snap.executing_node_id:
        parts.append(f"node={snap.executing_node_id}")
    if snap.progress:
        parts.append(f"progress={snap.progress.value}/{snap.progress.max}")
    if snap.preview_url:
        parts.append(f"preview={snap.preview_url}")
    return " ".join(parts)


async def _watch(args: argparse.Namespace, config: ComfyConfig) -> int:
    identity_store = SqliteIdentityStore.open(config.resolve_state_db())
    directory = FolderAccountDirectory(config.resolve_accounts_dir())
    store = SessionStore(config, identity_store=identity_store)

    closed = asyncio.Event()

    def on_change(snap: SessionSnapshot) -> None:
        log.info(_describe(snap))
        if snap.phase == PHASE_CLOSED:
            closed.set()

    store.add_listener(on_change)
    try:
        if args.identity and args.register:
            try:
                await store.register(directory, args.identity)
            except (AccountExistsError, ValueError) as e:
                print(f"Cannot register: {e}", file=sys.stderr)
                return 1
        elif args.identity:
            await store.connect(args.identity)
        else:
            await store.resume(directory)

        if store.phase != PHASE_OPEN:
            print("No open session (see log for details).", file=sys.stderr)
            return 1

        closed.clear()
        await closed.wait()
        return 0
    finally:
        await store.aclose()


async def _run_command(args: argparse.Namespace, config: ComfyConfig) -> int:
    identity_store = SqliteIdentityStore.open(config.resolve_state_db())
    async with ComfyClient(config, identity=identity_store.get) as client:
        if args.command == "submit":
            workflow = json.loads(args.workflow.read_text(encoding="utf-8"))
            queued = await client.queue_prompt(workflow, args.client_id)
            print(f"prompt_id={queued.prompt_id} number={queued.number}")
            for node_id, errors in queued.node_errors.items():
                print(f"  node {node_id}: {errors}")
        elif args.command == "interrupt":
            await client.interrupt(args.client_id)
        elif args.command == "clear":
            await client.clear_queue(args.client_id)
        elif args.command == "stats":
            stats = await client.get_system_stats(args.client_id)
            print(f"{stats.os} python {stats.python_version}")
            for device in stats.devices:
                free_gb = device.vram_free / 1024**3
                total_gb = device.vram_total / 1024**3
                print(f"  [{device.index}] {device.name} ({device.type}) {free_gb:.1f}/{total_gb:.1f} GiB free")
        elif args.command == "upload":
            uploaded = await client.upload_image(
                args.file, type=args.type, overwrite=args.overwrite, client_id=args.client_id
            )
            print(client.image_url(uploaded.name, uploaded.subfolder, uploaded.type))
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    _configure_logging(args.verbose)
    load_env()
    config = ComfyConfig(base_url=args.base_url)

    if args.command == "view-url":
        print(ComfyClient(config).image_url(args.filename, args.subfolder, args.type))
        return 0

    try:
        if args.command == "watch":
            return asyncio.run(_watch(args, config))
        return asyncio.run(_run_command(args, config))
    except CommandError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
