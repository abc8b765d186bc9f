"""Command line interface for utmeta.

A thin driver around :class:`~utmeta.session.session.MetadataSession`:
one peer, one attempt. Retrying other peers is left to the user.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from utmeta import __version__
from utmeta.cli.verbosity import VerbosityManager
from utmeta.config.config import ConfigManager, init_config
from utmeta.core.bencode import decode
from utmeta.core.identifiers import PeerEndpoint, generate_peer_id, parse_info_hash
from utmeta.models import Config
from utmeta.session.session import MetadataSession
from utmeta.utils.exceptions import BencodeError, UTMetaError
from utmeta.utils.logging_config import setup_logging

# Timeouts must be strictly positive.
_SECONDS = click.FloatRange(min=0, min_open=True)


def _raise_cli_error(message: str) -> None:
    """Raise a ClickException with the given message."""
    raise click.ClickException(message) from None


def _get_config_from_context(ctx: click.Context) -> ConfigManager:
    cfg_mgr = ctx.obj.get("config_manager")
    if cfg_mgr is None:
        _raise_cli_error("Configuration not initialized")
    return cfg_mgr


def _apply_network_overrides(cfg: Config, options: dict[str, Any]) -> None:
    if options.get("dial_timeout") is not None:
        cfg.network.dial_timeout = float(options["dial_timeout"])
    if options.get("handshake_timeout") is not None:
        cfg.network.handshake_timeout = float(options["handshake_timeout"])
    if options.get("metadata_timeout") is not None:
        cfg.network.metadata_timeout = float(options["metadata_timeout"])


def _decode_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def summarize_info(info: dict[bytes, Any]) -> dict[str, Any]:
    """Extract display fields from a decoded info dictionary."""
    files = info.get(b"files")
    if isinstance(files, list):
        total = sum(f.get(b"length", 0) for f in files if isinstance(f, dict))
        file_count = len(files)
    else:
        total = info.get(b"length", 0)
        file_count = 1
    pieces = info.get(b"pieces", b"")
    return {
        "name": _decode_str(info.get(b"name", b"")),
        "total_size": total,
        "piece_length": info.get(b"piece length", 0),
        "piece_count": len(pieces) // 20 if isinstance(pieces, bytes) else 0,
        "file_count": file_count,
        "private": bool(info.get(b"private", 0)),
    }


def _print_summary(console: Console, info_hash: bytes, summary: dict[str, Any]) -> None:
    table = Table(title="Torrent metadata", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Info hash", info_hash.hex())
    table.add_row("Name", summary["name"])
    table.add_row("Total size", f"{summary['total_size']:,} bytes")
    table.add_row("Piece length", f"{summary['piece_length']:,} bytes")
    table.add_row("Pieces", str(summary["piece_count"]))
    table.add_row("Files", str(summary["file_count"]))
    table.add_row("Private", "yes" if summary["private"] else "no")
    console.print(table)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Configuration file path",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (-v: info, -vv: debug, -vvv: debug with tracebacks)",
)
@click.version_option(__version__, prog_name="utmeta")
@click.pass_context
def cli(ctx, config, verbose):
    """Utmeta - fetch torrent metadata directly from a peer."""
    ctx.ensure_object(dict)
    verbosity_manager = VerbosityManager.from_count(verbose)
    ctx.obj["verbosity_manager"] = verbosity_manager

    try:
        config_manager = init_config(config, configure_logging=False)
    except UTMetaError as e:
        _raise_cli_error(str(e))
    ctx.obj["config_manager"] = config_manager

    observability = config_manager.config.observability.model_copy()
    if verbosity_manager.is_verbose():
        observability.log_level = verbosity_manager.log_level
    setup_logging(observability)


@cli.command()
@click.argument("address")
@click.argument("info_hash")
@click.option("--peer-id", help="Local 20-character peer id (generated if omitted)")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, writable=True),
    help="Write the raw info dictionary to this file",
)
@click.option("--raw", is_flag=True, help="Write the raw info dictionary to stdout")
@click.option("--json", "as_json", is_flag=True, help="Print the summary as JSON")
@click.option("--dial-timeout", type=_SECONDS, help="Connect timeout (s)")
@click.option("--handshake-timeout", type=_SECONDS, help="Handshake timeout (s)")
@click.option("--metadata-timeout", type=_SECONDS, help="Piece collection timeout (s)")
@click.pass_context
def fetch(ctx, address, info_hash, peer_id, output, raw, as_json, **options):
    """Fetch metadata for INFO_HASH from the peer at ADDRESS (host:port).

    INFO_HASH may be 40 hex characters, 32 base32 characters or a magnet link.
    """
    cfg_mgr = _get_config_from_context(ctx)
    cfg = cfg_mgr.config.model_copy(deep=True)
    _apply_network_overrides(cfg, options)
    verbosity_manager: VerbosityManager = ctx.obj["verbosity_manager"]
    console = Console(stderr=raw or as_json)

    try:
        target = parse_info_hash(info_hash)
        if peer_id is not None:
            local_id = peer_id.encode("latin-1")
        else:
            local_id = generate_peer_id(cfg.network.peer_id_prefix)
        endpoint = PeerEndpoint.parse(address, peer_id=local_id)
    except (UTMetaError, UnicodeEncodeError) as e:
        raise click.BadParameter(str(e)) from None

    try:
        with MetadataSession(endpoint, target, config=cfg) as session:
            metadata = session.fetch()
    except UTMetaError as e:
        if verbosity_manager.should_show_stack_trace():
            console.print_exception()
        _raise_cli_error(f"{type(e).__name__}: {e}")

    if output:
        Path(output).write_bytes(metadata)
        console.print(f"Wrote {len(metadata)} bytes to {output}")
    if raw:
        stdout = click.get_binary_stream("stdout")
        stdout.write(metadata)
        stdout.flush()
        return

    try:
        info = decode(metadata)
    except BencodeError as e:
        _raise_cli_error(f"Verified metadata is not valid bencode: {e}")
    if not isinstance(info, dict):
        _raise_cli_error("Verified metadata is not a dictionary")

    summary = summarize_info(info)
    if as_json:
        click.echo(json.dumps({"info_hash": target.hex(), **summary}, indent=2))
    else:
        _print_summary(console, target, summary)


@cli.group()
def config():
    """Configuration commands."""


@config.command("show")
@click.pass_context
def show_config(ctx):
    """Show the effective configuration as TOML."""
    cfg_mgr = _get_config_from_context(ctx)
    click.echo(cfg_mgr.export())


def main() -> None:
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
