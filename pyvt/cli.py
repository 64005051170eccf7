"""CLI interface for the vals platform."""

import json as jsonlib
import logging
import sys
from pathlib import Path
from typing import Any, Optional, cast

import click

from .api import VtClient
from .auth import clear_user_cache, load_user, require_api_key
from .config import config
from .exceptions import VtAPIError, VtError
from .models import Val
from .output import OutputFormatter, is_terminal
from .sqlite_dump import dump_csv_table, dump_sqlite_table, table_name_from_path
from .utils import VAL_EXTENSION, normalize_api_path, parse_val_identifier, val_web_url

logger = logging.getLogger(__name__)

PRIVACY_CHOICES = click.Choice(["public", "unlisted", "private"])


def _get_client(ctx: Any, out: OutputFormatter) -> VtClient:
    """Create an API client from the resolved token."""
    api_key = require_api_key(ctx, out)
    return VtClient(api_key=api_key)


def _read_stdin() -> str:
    return click.get_text_stream("stdin").read()


def _read_or_edit(initial: str, extension: str) -> str:
    """Read text from stdin when piped, otherwise open $EDITOR."""
    if not is_terminal(sys.stdin):
        return _read_stdin()
    text = click.edit(initial, extension=f".{extension}", require_save=False)
    return text if text is not None else initial


def _split_val(client: VtClient, identifier: str) -> tuple[str, str]:
    """Split ``[@][author/]name``; bare names belong to the current user."""
    try:
        return parse_val_identifier(identifier)
    except ValueError:
        return parse_val_identifier(identifier, load_user(client).username)


def _resolve_val(client: VtClient, identifier: str) -> Val:
    """Fetch a val from an ``[@][author/]name`` identifier."""
    author, name = _split_val(client, identifier)
    return client.get_val_by_alias(author, name)


@click.group()
@click.option(
    "--api-key", "-k", envvar="VALTOWN_TOKEN", help="API token (env: VALTOWN_TOKEN)"
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option()
@click.pass_context
def main(
    ctx: Any,
    api_key: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """vt - manage vals, blobs and tables from the command line."""
    ctx.ensure_object(dict)
    ctx.obj["api_key"] = api_key
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pyvt").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.option(
    "--api-key",
    "-k",
    prompt="Enter your API token",
    hide_input=True,
    help="API token",
)
@click.pass_context
def init(ctx: Any, api_key: str) -> None:
    """Save an API token to the config file.

    The token is validated against the API first; it is stored in
    ~/.config/pyvt/config and used when VALTOWN_TOKEN is not set.
    """
    out: OutputFormatter = ctx.obj["out"]

    out.info("Validating API token...")
    try:
        user = VtClient(api_key=api_key).get_current_user()
        out.success(f"✓ Token is valid (logged in as {user.username})")
    except VtError as e:
        out.error(f"Token validation failed: {e}")
        if not click.confirm("Save token anyway?", default=False):
            out.warning("Configuration cancelled.")
            ctx.exit(1)

    try:
        config.save_api_key(api_key)
        # Look the user up again on next use
        clear_user_cache(api_key)
    except OSError as e:
        out.error(f"Failed to save token: {e}")
        ctx.exit(1)

    out.print_summary(
        "Initialization Complete",
        [
            ("Status", "✓ Configuration saved successfully"),
            ("Config file", str(config.get_config_path())),
        ],
    )


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show the user owning the API token."""
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        user = client.get_current_user()
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(user.to_dict())
    else:
        out.print(f"Logged in as {user.username} (ID: {user.id})")


# =============================================================================
# vals
# =============================================================================


@main.group()
def val() -> None:
    """Manage vals."""


@val.command("list")
@click.option("--user", "-u", help="List the vals of another user")
@click.option("--limit", "-l", type=int, default=10, show_default=True)
@click.pass_context
def val_list(ctx: Any, user: Optional[str], limit: int) -> None:
    """List your vals (or another user's)."""
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        owner = client.get_user_by_alias(user) if user else load_user(client)
        vals = client.list_user_vals_page(owner.id, limit=limit)
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    for v in vals:
        v.author = v.author or owner.username
    _print_vals(out, vals)


@val.command("search")
@click.argument("query")
@click.option("--limit", "-l", type=int, default=10, show_default=True)
@click.pass_context
def val_search(ctx: Any, query: str, limit: int) -> None:
    """Search public vals."""
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        vals = client.search_vals(query, limit=limit)
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    _print_vals(out, vals)


def _print_vals(out: OutputFormatter, vals: list[Val]) -> None:
    if out.json_output:
        out.output_json([v.raw for v in vals])
        return
    out.output_table(
        [v.to_row() for v in vals],
        ["slug", "version", "link"],
        {"slug": "Slug", "version": "Version", "link": "Link"},
    )


@val.command("view")
@click.argument("identifier")
@click.option("--readme", is_flag=True, help="Show the readme instead of the code")
@click.option("--web", "-w", is_flag=True, help="Open the val in the browser")
@click.pass_context
def val_view(ctx: Any, identifier: str, readme: bool, web: bool) -> None:
    """Print the code of a val.

    IDENTIFIER: [@][author/]name of the val

    Examples:
        vt val view hello
        vt val view @alice/hello --readme
    """
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        if web:
            click.launch(val_web_url(*_split_val(client, identifier)))
            return

        v = _resolve_val(client, identifier)
    except (VtError, ValueError) as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(v.raw)
    elif readme:
        out.print_code(v.readme or "", "markdown")
    else:
        out.print_code(v.code, VAL_EXTENSION)


val.add_command(val_view, "cat")


@val.command("create")
@click.argument("name", required=False)
@click.option("--privacy", type=PRIVACY_CHOICES, help="Privacy of the val")
@click.option("--readme", help="Readme of the val")
@click.pass_context
def val_create(
    ctx: Any, name: Optional[str], privacy: Optional[str], readme: Optional[str]
) -> None:
    """Create a new val.

    The code is read from stdin when it is piped, otherwise $EDITOR is
    opened.
    """
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    code = _read_or_edit("", VAL_EXTENSION)

    try:
        v = client.create_val(name, code, privacy=privacy, readme=readme)
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(v.raw)
    elif v.web_url:
        out.success(f"Created val {v.name}, available at {v.web_url}")
    else:
        out.success(f"Created val {v.name}")


@val.command("edit")
@click.argument("identifier")
@click.option("--privacy", type=PRIVACY_CHOICES, help="Change the privacy")
@click.option("--readme", is_flag=True, help="Edit the readme instead of the code")
@click.pass_context
def val_edit(
    ctx: Any, identifier: str, privacy: Optional[str], readme: bool
) -> None:
    """Edit a val in $EDITOR (or from stdin).

    Saving new code creates a new version of the val.
    """
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        v = _resolve_val(client, identifier)
        if privacy:
            if v.privacy == privacy:
                out.warning("No privacy changes.")
                return
            client.update_val(v.id, privacy=privacy)
            out.success(f"Updated val {v.slug} privacy to {privacy}")
            return

        if readme:
            client.update_val(v.id, readme=_read_or_edit(v.readme or "", "md"))
            out.success(f"Updated val {v.slug} readme")
            return

        code = _read_or_edit(v.code, VAL_EXTENSION)
        if code == v.code:
            out.warning("No changes.")
            return
        client.create_version(v.id, code)
        out.success(f"Updated val {v.slug}")
    except (VtError, ValueError) as e:
        out.error(str(e))
        ctx.exit(1)


@val.command("rename")
@click.argument("old_name")
@click.argument("new_name")
@click.pass_context
def val_rename(ctx: Any, old_name: str, new_name: str) -> None:
    """Rename a val."""
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        v = _resolve_val(client, old_name)
        client.update_val(v.id, name=new_name)
    except (VtError, ValueError) as e:
        out.error(str(e))
        ctx.exit(1)
        return

    out.success(f"Renamed val {v.name} to {new_name}")


@val.command("delete")
@click.argument("identifier")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def val_delete(ctx: Any, identifier: str, yes: bool) -> None:
    """Delete a val."""
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        v = _resolve_val(client, identifier)
        if not yes and not click.confirm(f"Delete val {v.slug}?"):
            out.warning("Deletion cancelled.")
            return
        client.delete_val(v.id)
    except (VtError, ValueError) as e:
        out.error(str(e))
        ctx.exit(1)
        return

    out.success(f"Val {v.slug} deleted successfully")


val.add_command(val_delete, "rm")


# =============================================================================
# blobs
# =============================================================================


@main.group()
def blob() -> None:
    """Manage blobs."""


@blob.command("list")
@click.option("--prefix", "-p", help="Only list keys starting with PREFIX")
@click.pass_context
def blob_list(ctx: Any, prefix: Optional[str]) -> None:
    """List blobs."""
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        blobs = client.list_blobs(prefix=prefix)
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json([b.to_row() for b in blobs])
        return
    out.output_table(
        [b.to_row(human=out.terminal) for b in blobs],
        ["key", "size", "lastModified"],
        {"key": "Key", "size": "Size", "lastModified": "Last Modified"},
    )


blob.add_command(blob_list, "ls")


@blob.command("download")
@click.argument("key")
@click.argument("path", type=click.Path(dir_okay=False, allow_dash=True))
@click.pass_context
def blob_download(ctx: Any, key: str, path: str) -> None:
    """Download blob KEY to PATH ('-' for stdout)."""
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        data = client.download_blob(key)
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if path == "-":
        click.get_binary_stream("stdout").write(data)
        return
    Path(path).write_bytes(data)
    out.success(f"Downloaded {key} to {path}")


@blob.command("upload")
@click.argument("path", type=click.Path(dir_okay=False, allow_dash=True))
@click.argument("key")
@click.pass_context
def blob_upload(ctx: Any, path: str, key: str) -> None:
    """Upload PATH ('-' for stdin) as blob KEY."""
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        if path == "-":
            data = click.get_binary_stream("stdin").read()
        else:
            data = Path(path).read_bytes()
        client.upload_blob(key, data)
    except OSError as e:
        out.error(f"Cannot read {path}: {e}")
        ctx.exit(1)
        return
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    out.success(f"Uploaded {key}")


@blob.command("delete")
@click.argument("key")
@click.pass_context
def blob_delete(ctx: Any, key: str) -> None:
    """Delete blob KEY."""
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        client.delete_blob(key)
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    out.success(f"Deleted {key}")


blob.add_command(blob_delete, "rm")


# =============================================================================
# sqlite
# =============================================================================


def _print_query_result(out: OutputFormatter, result: Any) -> None:
    if out.json_output:
        out.output_json(result.to_dict())
        return
    rows = [dict(zip(result.columns, row)) for row in result.rows]
    out.output_table(rows, result.columns)


@main.command()
@click.argument("statement")
@click.pass_context
def query(ctx: Any, statement: str) -> None:
    """Execute a SQL statement against your database."""
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        result = client.execute_sql(statement)
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    _print_query_result(out, result)


@main.group()
def table() -> None:
    """Manage sqlite tables."""


@table.command("list")
@click.pass_context
def table_list(ctx: Any) -> None:
    """List tables."""
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        result = client.execute_sql(
            "SELECT name FROM sqlite_master WHERE type = 'table'"
        )
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    names = [row[0] for row in result.rows]
    if out.json_output:
        out.output_json(names)
        return
    for name in names:
        out.print(name)


@table.command("delete")
@click.argument("table_name")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def table_delete(ctx: Any, table_name: str, yes: bool) -> None:
    """Drop a table."""
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    if not yes and not click.confirm(f"Drop table {table_name}?"):
        out.warning("Deletion cancelled.")
        return

    quoted = '"' + table_name.replace('"', '""') + '"'
    try:
        client.execute_sql(f"DROP TABLE IF EXISTS {quoted}")
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    out.success("Table deleted.")


@table.command("import")
@click.option("--table-name", "-t", help="Name of the table to create")
@click.option(
    "--from-csv",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Create the table from a CSV file",
)
@click.option(
    "--from-db",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Copy the table from a SQLite database file",
)
@click.pass_context
def table_import(
    ctx: Any,
    table_name: Optional[str],
    from_csv: Optional[Path],
    from_db: Optional[Path],
) -> None:
    """Import a table from a CSV file or a SQLite database.

    Examples:
        vt table import --from-csv people.csv
        vt table import --from-db local.db --table-name people
    """
    out: OutputFormatter = ctx.obj["out"]

    if from_csv and from_db:
        out.error("Only one of --from-csv or --from-db can be used.")
        ctx.exit(1)
    if not from_csv and not from_db:
        out.error("Either --from-csv or --from-db is required.")
        ctx.exit(1)
    if from_db and not table_name:
        out.error("--table-name is required when importing from a database.")
        ctx.exit(1)

    client = _get_client(ctx, out)

    try:
        if from_csv:
            statements = dump_csv_table(
                from_csv, table_name or table_name_from_path(from_csv)
            )
        else:
            statements = dump_sqlite_table(cast(Path, from_db), cast(str, table_name))
    except (ValueError, OSError) as e:
        out.error(str(e))
        ctx.exit(1)
        return

    logger.debug(f"Importing {len(statements)} statement(s)")
    try:
        result = client.batch_sql(statements)
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(result)
    else:
        out.success(f"Imported {len(statements) - 1} row(s)")


# =============================================================================
# eval / env / api
# =============================================================================


@main.command("eval")
@click.argument("expression", required=False)
@click.option("--args", "args_json", help="Arguments as a JSON array")
@click.pass_context
def eval_cmd(ctx: Any, expression: Optional[str], args_json: Optional[str]) -> None:
    """Evaluate an expression and print the result as JSON.

    The expression is read from stdin when omitted.
    """
    out: OutputFormatter = ctx.obj["out"]

    if not expression:
        if is_terminal(sys.stdin):
            out.error("Expression is required.")
            ctx.exit(1)
        expression = _read_stdin()

    args = None
    if args_json:
        try:
            args = jsonlib.loads(args_json)
        except ValueError as e:
            out.error(f"Invalid --args JSON: {e}")
            ctx.exit(1)
        if not isinstance(args, list):
            out.error("--args must be a JSON array")
            ctx.exit(1)

    client = _get_client(ctx, out)
    try:
        result = client.evaluate(expression, args=args)
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    out.output_json(result)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def env(ctx: Any, as_json: bool) -> None:
    """Print your environment variables."""
    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    try:
        values = client.get_env()
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if as_json or out.json_output:
        out.output_json(values)
        return
    for key, value in values.items():
        out.print(f"{key}={value}")


@main.command()
@click.argument("path")
@click.option("--method", "-X", help="HTTP method (default: GET, or POST with -d)")
@click.option("--data", "-d", help="Request body ('@-' reads stdin)")
@click.option("--header", "-H", multiple=True, help="Request header 'Name: value'")
@click.pass_context
def api(
    ctx: Any,
    path: str,
    method: Optional[str],
    data: Optional[str],
    header: tuple[str, ...],
) -> None:
    """Make an authenticated API request and print the response.

    Examples:
        vt api /v1/me
        vt api me
        echo '{"code": "1+1"}' | vt api /v1/eval -d @-
    """
    out: OutputFormatter = ctx.obj["out"]

    headers: dict[str, str] = {}
    for h in header:
        key, sep, value = h.partition(":")
        if not sep:
            out.error(f"Invalid header: {h}")
            ctx.exit(1)
        headers[key.strip()] = value.strip()

    body = _read_stdin() if data == "@-" else data
    if body is not None and not any(k.lower() == "content-type" for k in headers):
        headers["Content-Type"] = "application/json"

    client = _get_client(ctx, out)
    try:
        response = client.request(
            method or ("POST" if body is not None else "GET"),
            normalize_api_path(path),
            headers=headers,
            content=body,
        )
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if "application/json" in response.headers.get("Content-Type", ""):
        try:
            out.output_json(response.json())
            return
        except ValueError:
            pass
    out.print(response.text)


# =============================================================================
# sync
# =============================================================================


def _print_sync_result(out: OutputFormatter, result: Any) -> None:
    if out.json_output:
        out.output_json(result.to_dict())
        return
    if not result.has_changes:
        out.info("Already up to date.")
        return
    out.print_summary(
        "Sync Complete",
        [
            ("Created remotely", str(len(result.created_remote))),
            ("Pushed", str(len(result.pushed))),
            ("Deleted remotely", str(len(result.deleted_remote))),
            ("Pulled", str(len(result.created_local))),
            ("Updated locally", str(len(result.updated_local))),
            ("Renamed", str(len(result.renamed_local))),
            ("Deleted remotely since last sync", str(len(result.pruned))),
            ("Env updated", "yes" if result.env_updated else "no"),
        ],
    )


@main.command()
@click.argument("directory", type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
def clone(ctx: Any, directory: Path) -> None:
    """Create a sync workspace in DIRECTORY and pull all your vals.

    The workspace holds vt.lock, .env and a vals/ directory. Use
    'vt sync' inside it afterwards.
    """
    from .sync import SyncEngine, SyncWorkspace, always_confirm

    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)
    workspace = SyncWorkspace.from_root(directory)

    try:
        workspace.initialize()
    except FileExistsError as e:
        out.error(f"{e}. Use 'vt sync' instead.")
        ctx.exit(1)

    try:
        result = SyncEngine(client, always_confirm, out).sync(workspace)
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(result.to_dict())
    else:
        out.success(f"Cloned {len(result.created_local)} val(s) into {directory}")


@main.command()
@click.argument(
    "directory",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
)
@click.option("--yes", "-y", is_flag=True, help="Accept every confirmation")
@click.pass_context
def sync(ctx: Any, directory: Path, yes: bool) -> None:
    """Sync a workspace with your vals, in both directions.

    New and modified local files are pushed first, then remote changes are
    pulled. When a val changed on both sides the local version wins.
    Creating, deleting and overwriting ask for confirmation unless --yes
    is given.

    Examples:
        vt sync
        vt sync ./my-vals --yes
    """
    from .sync import SyncEngine, SyncWorkspace, always_confirm

    out: OutputFormatter = ctx.obj["out"]
    client = _get_client(ctx, out)

    def ask(prompt: str) -> bool:
        return click.confirm(prompt, default=False)

    engine = SyncEngine(client, always_confirm if yes else ask, out)

    try:
        result = engine.sync(SyncWorkspace.from_root(directory))
    except KeyboardInterrupt:
        out.warning("\nSync cancelled by user")
        ctx.exit(130)
        return
    except VtAPIError as e:
        out.error(f"API error: {e}")
        ctx.exit(1)
        return
    except VtError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    _print_sync_result(out, result)
