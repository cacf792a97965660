"""
CLI interface for the UltraNote sync server.

Usage:
    ultranote serve --port 3366
    ultranote status --server http://127.0.0.1:3366
    ultranote data export backup.json
    ultranote trash empty notes
"""

import json
import sys
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .config import StoreConfig, get_data_dir, load_or_create_config
from .document import DocumentState
from .logging_config import (
    configure_ops_log,
    configure_quiet_mode,
    enable_debug_mode,
    verbose_from_env,
)
from .persistence import JsonFileStore
from .types import RECORD_COLLECTIONS, ensure_collections, is_deleted, is_purged

# Keys a file must carry to be accepted as a full backup for replace
REQUIRED_BACKUP_KEYS = ("notes", "tasks")


# Configure quiet mode by default (suppress verbose library output)
# Set ULTRANOTE_VERBOSE=1 to enable debug mode via environment
if verbose_from_env():
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"ultranote {version('ultranote-sync')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_data_dir_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _data_dir_callback(value: Optional[Path]):
    global _data_dir_override
    _data_dir_override = value


def _get_config() -> StoreConfig:
    path = _data_dir_override or get_data_dir()
    return load_or_create_config(Path(path).expanduser())


def _get_store(config: StoreConfig) -> JsonFileStore:
    return JsonFileStore(config.data_path)


app = typer.Typer(
    name="ultranote",
    help="Sync server and tools for the UltraNote document.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    data_dir: Annotated[Optional[Path], typer.Option(
        "--data-dir", "-d",
        envvar="ULTRANOTE_DATA_DIR",
        help="Path to the data directory (default: ~/.ultranote/)",
        callback=_data_dir_callback,
        is_eager=True,
    )] = None,
):
    """Sync server and tools for the UltraNote document."""


def _live_counts(document: dict) -> dict:
    counts = {}
    for name in RECORD_COLLECTIONS:
        items = document.get(name)
        if not isinstance(items, list):
            counts[name] = 0
            continue
        counts[name] = sum(
            1 for r in items
            if isinstance(r, dict) and not is_deleted(r) and not is_purged(r)
        )
    return counts


# -----------------------------------------------------------------------------
# Server
# -----------------------------------------------------------------------------


@app.command()
def serve(
    host: Annotated[Optional[str], typer.Option(
        "--host", help="Interface to listen on (default from config)"
    )] = None,
    port: Annotated[Optional[int], typer.Option(
        "--port", "-p", help="Port to listen on (default from config, env PORT)"
    )] = None,
):
    """Run the document server."""
    from .server import create_app

    config = _get_config()
    if host:
        config.server.host = host
    if port:
        config.server.port = port

    configure_ops_log(config.path)
    flask_app = create_app(config)
    typer.echo(
        f"Serving {config.data_path} on http://{config.server.host}:{config.server.port}",
        err=True,
    )
    flask_app.run(host=config.server.host, port=config.server.port)


@app.command()
def status(
    server: Annotated[Optional[str], typer.Option(
        "--server", help="Server URL (default from config)"
    )] = None,
):
    """Show the server document's version and live record counts."""
    from .client import DocumentClient

    config = _get_config()
    client = DocumentClient(server or config.sync.server_url, timeout=config.sync.timeout)
    try:
        document = client.fetch_document()
    finally:
        client.close()

    if document is None:
        typer.echo(f"No document available from {client.server_url}", err=True)
        raise SystemExit(1)

    counts = _live_counts(document)
    if _get_json_output():
        typer.echo(json.dumps({
            "server": client.server_url,
            "version": document.get("version", 1),
            "counts": counts,
        }, indent=2))
        return

    typer.echo(f"server:  {client.server_url}")
    typer.echo(f"version: {document.get('version', 1)}")
    for name, count in counts.items():
        typer.echo(f"  {name}: {count}")


@app.command("config")
def config_cmd():
    """Show the effective configuration."""
    config = _get_config()
    info = {
        "data_dir": str(config.path),
        "config_file": str(config.config_path),
        "data_file": str(config.data_path),
        "server": {
            "host": config.server.host,
            "port": config.server.port,
            "max_body_bytes": config.server.max_body_bytes,
            "delete_policy": config.server.delete_policy.value,
        },
        "sync": {
            "server_url": config.sync.server_url,
            "poll_interval": config.sync.poll_interval,
            "initial_delay": config.sync.initial_delay,
            "debounce": config.sync.debounce,
            "typing_quiet_period": config.sync.typing_quiet_period,
            "timeout": config.sync.timeout,
            "auto_sync": config.sync.auto_sync,
            "immediate_keys": list(config.sync.immediate_keys),
        },
        "activity_limit": config.activity_limit,
    }
    if _get_json_output():
        typer.echo(json.dumps(info, indent=2))
        return
    for key, value in info.items():
        if isinstance(value, dict):
            typer.echo(f"{key}:")
            for k, v in value.items():
                typer.echo(f"  {k}: {v}")
        else:
            typer.echo(f"{key}: {value}")


# -----------------------------------------------------------------------------
# Data Management
# -----------------------------------------------------------------------------

data_app = typer.Typer(
    name="data",
    help="Data management: export, import.",
    rich_markup_mode=None,
)
app.add_typer(data_app)


@data_app.command("export")
def data_export(
    output: Annotated[str, typer.Argument(
        help="Output file path (use '-' for stdout)"
    )],
):
    """Export the on-disk document to JSON for backup or migration."""
    config = _get_config()
    document = _get_store(config).read_document()
    if document is None:
        typer.echo(f"Error: no document at {config.data_path}", err=True)
        raise SystemExit(1)

    text = json.dumps(document, ensure_ascii=False, indent=2) + "\n"
    if output == "-":
        sys.stdout.write(text)
        return
    Path(output).write_text(text, encoding="utf-8")
    counts = _live_counts(document)
    typer.echo(
        f"Exported version {document.get('version', 1)} "
        f"({counts['notes']} notes, {counts['tasks']} tasks) to {output}",
        err=True,
    )


@data_app.command("import")
def data_import(
    file: Annotated[str, typer.Argument(help="JSON backup file to import")],
    mode: Annotated[str, typer.Option(
        "--mode", "-m", help="Import mode: merge (reconcile records) or replace (overwrite)"
    )] = "merge",
    yes: Annotated[bool, typer.Option(
        "--yes", "-y", help="Do not ask for confirmation"
    )] = False,
):
    """Import a JSON backup into the on-disk document."""
    from .server import PersistError, merge_and_persist

    if mode not in ("merge", "replace"):
        typer.echo(f"Error: --mode must be 'merge' or 'replace', got '{mode}'", err=True)
        raise SystemExit(1)

    if file == "-":
        data = json.loads(sys.stdin.read())
    else:
        path = Path(file)
        if not path.exists():
            typer.echo(f"Error: file not found: {file}", err=True)
            raise SystemExit(1)
        data = json.loads(path.read_text(encoding="utf-8"))

    if not isinstance(data, dict):
        typer.echo("Error: backup must be a JSON object", err=True)
        raise SystemExit(1)

    config = _get_config()
    store = _get_store(config)

    if mode == "replace":
        missing = [k for k in REQUIRED_BACKUP_KEYS if k not in data]
        if missing:
            typer.echo(f"Error: not a full backup (missing {', '.join(missing)})", err=True)
            raise SystemExit(1)
        if not yes and not typer.confirm(
            f"This will overwrite {config.data_path} with {file}. Continue?"
        ):
            raise SystemExit(0)
        current = store.read_document() or {}
        document = ensure_collections(dict(data))
        document["version"] = max(document["version"], current.get("version", 0)) + 1
        if not store.write_document(document):
            typer.echo(f"Error: failed to write {config.data_path}", err=True)
            raise SystemExit(1)
    else:
        try:
            document = merge_and_persist(
                store, data,
                delete_policy=config.server.delete_policy,
                activity_limit=config.activity_limit,
            )
        except PersistError as e:
            typer.echo(f"Error: {e}", err=True)
            raise SystemExit(1)

    counts = _live_counts(document)
    typer.echo(
        f"Imported ({mode}): version {document['version']}, "
        f"{counts['notes']} notes, {counts['tasks']} tasks",
        err=True,
    )


# -----------------------------------------------------------------------------
# Trash
# -----------------------------------------------------------------------------

trash_app = typer.Typer(
    name="trash",
    help="Soft-deleted records.",
    rich_markup_mode=None,
)
app.add_typer(trash_app)


@trash_app.command("list")
def trash_list(
    collection: Annotated[str, typer.Argument(help="Collection name (e.g. notes)")],
):
    """List soft-deleted records of a collection."""
    config = _get_config()
    document = _get_store(config).read_document()
    if document is None:
        typer.echo(f"Error: no document at {config.data_path}", err=True)
        raise SystemExit(1)
    try:
        records = DocumentState(document, activity_limit=config.activity_limit).trash(collection)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    if _get_json_output():
        typer.echo(json.dumps(records, indent=2, ensure_ascii=False))
        return
    for record in records:
        title = record.get("title") or record.get("name") or ""
        typer.echo(f"{record['id']} {record.get('deletedAt', '')} {title}")


@trash_app.command("empty")
def trash_empty(
    collection: Annotated[str, typer.Argument(help="Collection name (e.g. notes)")],
):
    """Permanently purge the soft-deleted records of a collection."""
    config = _get_config()
    store = _get_store(config)

    def purge(current: Optional[dict]) -> int:
        if current is None:
            typer.echo(f"Error: no document at {config.data_path}", err=True)
            raise SystemExit(1)
        state = DocumentState(current, activity_limit=config.activity_limit)
        count = state.empty_trash(collection)
        if count:
            document = state.snapshot()
            document["version"] = document.get("version", 1) + 1
            if not store.write_document(document):
                typer.echo(f"Error: failed to write {config.data_path}", err=True)
                raise SystemExit(1)
        return count

    try:
        count = store.transaction(purge)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    typer.echo(f"Purged {count} records from {collection}", err=True)


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, data_dir=_data_dir_override, context="ultranote CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
