from __future__ import annotations

import argparse
import asyncio
import socket
import sys
from pathlib import Path

import uvicorn

from oncelink.client.sender import fetch_file, send_file
from oncelink.config import Settings
from oncelink.errors import OnceLinkError, PayloadTooLarge
from oncelink.log import (
    console,
    make_transfer_progress,
    setup_logging,
    step,
)
from oncelink.server.app import create_app
from oncelink.server.state import TransferRegistry
from oncelink.server.store import FilesystemObjectStore

DEFAULT_PORT = 8080


def parse_target(target: str) -> str:
    """Parse a target string into a base URL.

    Accepts formats like:
      - host              → http://host:8080
      - host:port         → http://host:port
      - http://host:port  → http://host:port  (passed through)
      - https://host:port → https://host:port (passed through)
    """
    # If the target already has a scheme, use it as-is.
    if target.startswith(("http://", "https://")):
        return target.rstrip("/")

    if ":" in target:
        host, port_str = target.rsplit(":", 1)
        try:
            port = int(port_str)
        except ValueError:
            console.print(f"[red]Invalid port in target: {target}")
            sys.exit(1)
        return f"http://{host}:{port}"
    return f"http://{target}:{DEFAULT_PORT}"


def load_settings(args: argparse.Namespace) -> Settings:
    """Environment settings, with ``--storage-dir`` taking precedence."""
    settings = Settings.from_env()
    if getattr(args, "storage_dir", None):
        settings = settings.model_copy(update={"storage_dir": Path(args.storage_dir)})
    return settings


def cmd_serve(args: argparse.Namespace) -> None:
    setup_logging()

    # Fail fast if the port is already in use.
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((args.host, args.port))
        except OSError:
            console.print(
                f"[red]Port {args.port} is already in use. "
                "Is another oncelink server running?"
            )
            sys.exit(1)

    settings = load_settings(args)
    app = create_app(settings=settings)
    console.print(
        f"[bold green]oncelink server[/] starting on "
        f"[cyan]{args.host}:{args.port}[/] "
        f"(ttl={settings.ttl_seconds}s, max={settings.max_bytes} bytes, "
        f"storage={settings.storage_dir})"
    )
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")


def cmd_send(args: argparse.Namespace) -> None:
    setup_logging()

    file_path = Path(args.file)
    if not file_path.is_file():
        console.print(f"[red]Not a file: {file_path}")
        sys.exit(1)

    base_url = parse_target(args.target)
    progress = make_transfer_progress()
    task_id = progress.add_task(file_path.name, total=file_path.stat().st_size)

    try:
        with progress:
            result = send_file(
                file_path,
                base_url,
                step=step,
                progress_callback=lambda n: progress.advance(task_id, n),
                chunk_size=args.chunk_size,
            )
    except PayloadTooLarge:
        step("[red]Upload rejected: file exceeds the server's size limit.")
        sys.exit(1)
    except OnceLinkError as exc:
        step(f"[red]{exc}")
        sys.exit(1)

    console.print(f"\n[bold]One-time link:[/] [cyan]{result.download_url}")
    console.print(f"Expires at {result.expires_at.astimezone():%Y-%m-%d %H:%M:%S}")


def cmd_fetch(args: argparse.Namespace) -> None:
    setup_logging()

    progress = make_transfer_progress()
    task_id = progress.add_task("Downloading", total=None)

    try:
        with progress:
            saved = fetch_file(
                args.url,
                Path(args.output_dir),
                progress_callback=lambda n: progress.advance(task_id, n),
                total_callback=lambda total: progress.update(task_id, total=total),
            )
    except OnceLinkError as exc:
        console.print(f"[red]{exc}")
        sys.exit(1)

    console.print(f"[green]Saved to {saved}")


def cmd_sweep(args: argparse.Namespace) -> None:
    setup_logging()

    settings = load_settings(args)
    registry = TransferRegistry(FilesystemObjectStore(settings.storage_dir), settings)
    removed = asyncio.run(registry.sweep_expired())
    console.print(f"Removed [bold]{removed}[/] expired object(s).")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="oncelink",
        description="Hand a file to another device through a one-time link",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # --- serve ---
    lp = sub.add_parser("serve", help="Start the oncelink server")
    lp.add_argument("--host", default="0.0.0.0", help="Bind address")
    lp.add_argument("--port", type=int, default=DEFAULT_PORT, help="Listen port")
    lp.add_argument(
        "--storage-dir",
        default=None,
        help="Directory for stored transfers (default: $STORAGE_DIR)",
    )
    lp.set_defaults(func=cmd_serve)

    # --- send ---
    sp = sub.add_parser("send", help="Upload a file and print its one-time link")
    sp.add_argument("file", help="File to send")
    sp.add_argument("target", help="Server host[:port] or URL")
    sp.add_argument(
        "--chunk-size",
        type=int,
        default=1_048_576,
        help="Upload chunk size in bytes (default: 1048576)",
    )
    sp.set_defaults(func=cmd_send)

    # --- fetch ---
    fp = sub.add_parser("fetch", help="Download a one-time link")
    fp.add_argument("url", help="Download URL printed by 'send'")
    fp.add_argument(
        "--output-dir",
        "-o",
        default=".",
        help="Directory to save into (default: current directory)",
    )
    fp.set_defaults(func=cmd_fetch)

    # --- sweep ---
    wp = sub.add_parser("sweep", help="Delete expired transfers from storage")
    wp.add_argument(
        "--storage-dir",
        default=None,
        help="Directory for stored transfers (default: $STORAGE_DIR)",
    )
    wp.set_defaults(func=cmd_sweep)

    args = parser.parse_args()
    args.func(args)
