"""
CLI interface for the media catalog.

Usage:
    mediashelf search --keyword cat --tag happy --sort usageCount
    mediashelf add smile.png --format png --size 2048 --tag happy
    mediashelf category add "Reaction images"
    mediashelf setting set theme '"dark"'
"""

import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from typing_extensions import Annotated

from .api import Catalog
from .errors import CatalogError
from .logging_config import enable_debug_mode, verbose_requested
from .types import Category, Item, Tag

# Set MEDIASHELF_VERBOSE=1 to enable debug mode via environment
if verbose_requested():
    enable_debug_mode()


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"mediashelf {version('mediashelf')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


app = typer.Typer(
    name="mediashelf",
    help="Local media catalog: items, categories, tags and settings.",
    no_args_is_help=False,
    invoke_without_command=True,
    rich_markup_mode=None,
)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
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
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="MEDIASHELF_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Local media catalog: items, categories, tags and settings."""
    # Without a subcommand, show catalog statistics
    if ctx.invoked_subcommand is None:
        stats()


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _fail(e: CatalogError):
    typer.echo(f"Error: {e.kind}: {e}", err=True)
    raise typer.Exit(1)


@contextmanager
def _open_catalog() -> Iterator[Catalog]:
    """Open the catalog for one command; catalog errors become exit code 1."""
    try:
        catalog = Catalog(_store_override).open()
    except CatalogError as e:
        _fail(e)
    try:
        yield catalog
    except CatalogError as e:
        _fail(e)
    finally:
        catalog.close()


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _format_item(item: Item, tag_names: dict[str, str]) -> str:
    tags = ", ".join(tag_names.get(t, t) for t in item.tags)
    star = "*" if item.is_favorite else " "
    line = (f"{star} {item.id}  {item.filename}  {item.format or '-'}  "
            f"{item.width}x{item.height}  {item.size}B  used {item.usage_count}")
    if item.category_id:
        line += f"  [{item.category_id}]"
    if tags:
        line += f"  #{tags}"
    return line


def _show_items(catalog: Catalog, items: list[Item]) -> None:
    if _get_json_output():
        _echo_json([item.to_dict() for item in items])
        return
    if not items:
        typer.echo("No items.", err=True)
        return
    tag_names = {tag.id: tag.name for tag in catalog.tags.list()}
    for item in items:
        typer.echo(_format_item(item, tag_names))


def _show_item(catalog: Catalog, item: Item) -> None:
    if _get_json_output():
        _echo_json(item.to_dict())
    else:
        _show_items(catalog, [item])


def _show_categories(categories: list[Category]) -> None:
    if _get_json_output():
        _echo_json([c.to_dict() for c in categories])
        return
    for c in categories:
        builtin = " (built-in)" if c.is_builtin else ""
        parent = f"  parent={c.parent_id}" if c.parent_id else ""
        typer.echo(f"{c.id}  {c.name}{builtin}{parent}")


def _show_tags(tags: list[Tag]) -> None:
    if _get_json_output():
        _echo_json([t.to_dict() for t in tags])
        return
    for t in tags:
        color = f"  {t.color}" if t.color else ""
        typer.echo(f"{t.id}  {t.name}{color}")


def _tag_ids(catalog: Catalog, names: Optional[list[str]]) -> list[str]:
    """Resolve tag names to ids, creating missing tags."""
    return [catalog.tags.create_or_get(name).id for name in names or []]


def _parse_value(raw: str):
    """Settings values are JSON; anything else is taken as a plain string."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


# -----------------------------------------------------------------------------
# Items
# -----------------------------------------------------------------------------

@app.command()
def search(
    keyword: Annotated[Optional[str], typer.Argument(help="Text to find in filenames or tag names")] = None,
    category: Annotated[Optional[str], typer.Option("--category", "-c", help="Category ID")] = None,
    tag: Annotated[Optional[list[str]], typer.Option("--tag", "-t", help="Tag name (repeatable, any matches)")] = None,
    exclude_tag: Annotated[Optional[list[str]], typer.Option("--exclude-tag", help="Tag ID to exclude (repeatable)")] = None,
    format: Annotated[Optional[str], typer.Option("--format", "-f", help="File format, e.g. png")] = None,
    favorite: Annotated[Optional[bool], typer.Option("--favorite/--not-favorite", help="Favorite flag")] = None,
    min_size: Annotated[Optional[int], typer.Option("--min-size", help="Minimum size in bytes")] = None,
    max_size: Annotated[Optional[int], typer.Option("--max-size", help="Maximum size in bytes")] = None,
    since: Annotated[Optional[str], typer.Option("--since", help="Earliest date (YYYY-MM-DD or ISO timestamp)")] = None,
    until: Annotated[Optional[str], typer.Option("--until", help="Latest date, inclusive")] = None,
    date_field: Annotated[str, typer.Option("--date-field", help="createdAt or updatedAt")] = "createdAt",
    sort: Annotated[str, typer.Option("--sort", help="updatedAt, createdAt, usageCount, name or size")] = "updatedAt",
    order: Annotated[str, typer.Option("--order", help="ASC or DESC")] = "DESC",
    limit: Annotated[Optional[int], typer.Option("--limit", "-n", help="Maximum results")] = None,
    offset: Annotated[int, typer.Option("--offset", help="Skip this many results")] = 0,
):
    """Search items with filters."""
    filters = {
        "keyword": keyword,
        "categoryId": category,
        "tags": tag or None,
        "excludeTagIds": exclude_tag or None,
        "format": format,
        "isFavorite": favorite,
        "dateField": date_field,
        "sortBy": sort,
        "sortOrder": order,
        "limit": limit,
        "offset": offset,
    }
    if min_size is not None or max_size is not None:
        filters["sizeRange"] = {"min": min_size, "max": max_size}
    if since or until:
        filters["dateRange"] = {"start": since, "end": until}
    with _open_catalog() as catalog:
        _show_items(catalog, catalog.search(filters))


@app.command()
def view(
    category: Annotated[str, typer.Argument(help="Category ID: favorites, recent, default, ... ('' for all)")] = "",
):
    """List the items of a sidebar category view."""
    with _open_catalog() as catalog:
        _show_items(catalog, catalog.view(category))


@app.command()
def get(id: Annotated[str, typer.Argument(help="Item ID")]):
    """Show one item."""
    with _open_catalog() as catalog:
        item = catalog.items.get(id)
        if item is None:
            typer.echo(f"Not found: {id}", err=True)
            raise typer.Exit(1)
        _show_item(catalog, item)


@app.command()
def add(
    filename: Annotated[str, typer.Argument(help="Display filename")],
    id: Annotated[Optional[str], typer.Option("--id", help="Item ID (generated if omitted)")] = None,
    original_path: Annotated[str, typer.Option("--path", help="Original source path")] = "",
    storage_path: Annotated[str, typer.Option("--storage-path", help="Where the file is stored")] = "",
    format: Annotated[str, typer.Option("--format", "-f", help="File format")] = "",
    size: Annotated[int, typer.Option("--size", help="Size in bytes")] = 0,
    width: Annotated[int, typer.Option("--width", help="Width in pixels")] = 0,
    height: Annotated[int, typer.Option("--height", help="Height in pixels")] = 0,
    tag: Annotated[Optional[list[str]], typer.Option("--tag", "-t", help="Tag name (repeatable, created if new)")] = None,
    category: Annotated[Optional[str], typer.Option("--category", "-c", help="Category ID")] = None,
    favorite: Annotated[bool, typer.Option("--favorite", help="Mark as favorite")] = False,
):
    """Add an item record."""
    with _open_catalog() as catalog:
        item = catalog.items.add(Item(
            id=id or "",
            filename=filename,
            original_path=original_path,
            storage_path=storage_path,
            format=format,
            size=size,
            width=width,
            height=height,
            tags=_tag_ids(catalog, tag),
            category_id=category,
            is_favorite=favorite,
        ))
        _show_item(catalog, item)


@app.command()
def update(
    id: Annotated[str, typer.Argument(help="Item ID")],
    filename: Annotated[Optional[str], typer.Option("--filename", help="New display filename")] = None,
    category: Annotated[Optional[str], typer.Option("--category", "-c", help="Category ID")] = None,
    favorite: Annotated[Optional[bool], typer.Option("--favorite/--not-favorite", help="Favorite flag")] = None,
    tag: Annotated[Optional[list[str]], typer.Option("--tag", "-t", help="Replace tags with these names")] = None,
    usage: Annotated[Optional[int], typer.Option("--usage", help="Overwrite the usage counter")] = None,
):
    """Change fields of an item."""
    with _open_catalog() as catalog:
        changes: dict = {}
        if filename is not None:
            changes["filename"] = filename
        if category is not None:
            changes["categoryId"] = category
        if favorite is not None:
            changes["isFavorite"] = favorite
        if tag:
            changes["tags"] = _tag_ids(catalog, tag)
        if usage is not None:
            changes["usageCount"] = usage
        _show_item(catalog, catalog.items.update(id, changes))


@app.command()
def rename(
    id: Annotated[str, typer.Argument(help="Item ID")],
    filename: Annotated[str, typer.Argument(help="New display filename")],
):
    """Rename an item."""
    with _open_catalog() as catalog:
        _show_item(catalog, catalog.items.rename(id, filename))


@app.command()
def use(id: Annotated[str, typer.Argument(help="Item ID")]):
    """Record one use of an item."""
    with _open_catalog() as catalog:
        _show_item(catalog, catalog.items.increment_usage(id))


@app.command()
def delete(id: Annotated[str, typer.Argument(help="Item ID")]):
    """Delete an item record (the file itself is untouched)."""
    with _open_catalog() as catalog:
        catalog.items.delete(id)
        typer.echo(f"Deleted: {id}", err=True)


@app.command()
def stats():
    """Show catalog statistics."""
    with _open_catalog() as catalog:
        counts = catalog.stats()
        if _get_json_output():
            _echo_json(counts)
            return
        typer.echo(f"store: {catalog.store_path}")
        for key, value in counts.items():
            typer.echo(f"{key}: {value}")


# -----------------------------------------------------------------------------
# Categories
# -----------------------------------------------------------------------------

category_app = typer.Typer(name="category", help="Manage categories.", rich_markup_mode=None)
app.add_typer(category_app)


@category_app.command("list")
def category_list():
    """List categories in display order."""
    with _open_catalog() as catalog:
        _show_categories(catalog.categories.list_all())


@category_app.command("add")
def category_add(
    name: Annotated[str, typer.Argument(help="Category name")],
    id: Annotated[Optional[str], typer.Option("--id", help="Category ID (generated if omitted)")] = None,
    description: Annotated[Optional[str], typer.Option("--description", "-d")] = None,
    color: Annotated[Optional[str], typer.Option("--color")] = None,
    parent: Annotated[Optional[str], typer.Option("--parent", help="Parent category ID")] = None,
    position: Annotated[Optional[int], typer.Option("--position", help="Display position")] = None,
    icon: Annotated[Optional[str], typer.Option("--icon")] = None,
):
    """Create a category."""
    with _open_catalog() as catalog:
        category = catalog.categories.create(Category(
            id=id or "", name=name, description=description, color=color,
            parent_id=parent, position=position, icon=icon,
        ))
        _show_categories([category])


@category_app.command("update")
def category_update(
    id: Annotated[str, typer.Argument(help="Category ID")],
    name: Annotated[Optional[str], typer.Option("--name")] = None,
    description: Annotated[Optional[str], typer.Option("--description", "-d")] = None,
    color: Annotated[Optional[str], typer.Option("--color")] = None,
    parent: Annotated[Optional[str], typer.Option("--parent", help="Parent category ID")] = None,
    position: Annotated[Optional[int], typer.Option("--position")] = None,
    icon: Annotated[Optional[str], typer.Option("--icon")] = None,
):
    """Change fields of a category."""
    changes = {
        key: value for key, value in (
            ("name", name), ("description", description), ("color", color),
            ("parentId", parent), ("position", position), ("icon", icon),
        ) if value is not None
    }
    with _open_catalog() as catalog:
        _show_categories([catalog.categories.update(id, changes)])


@category_app.command("delete")
def category_delete(id: Annotated[str, typer.Argument(help="Category ID")]):
    """Delete a category. Its items keep the category ID."""
    with _open_catalog() as catalog:
        catalog.categories.delete(id)
        typer.echo(f"Deleted category: {id}", err=True)


# -----------------------------------------------------------------------------
# Tags
# -----------------------------------------------------------------------------

tag_app = typer.Typer(name="tag", help="Manage tags.", rich_markup_mode=None)
app.add_typer(tag_app)


@tag_app.command("list")
def tag_list():
    """List tags by name."""
    with _open_catalog() as catalog:
        _show_tags(catalog.tags.list())


@tag_app.command("add")
def tag_add(
    name: Annotated[str, typer.Argument(help="Tag name")],
    color: Annotated[Optional[str], typer.Option("--color")] = None,
    description: Annotated[Optional[str], typer.Option("--description", "-d")] = None,
):
    """Get or create a tag by name."""
    with _open_catalog() as catalog:
        _show_tags([catalog.tags.create_or_get(name, color, description)])


@tag_app.command("rename")
def tag_rename(
    id: Annotated[str, typer.Argument(help="Tag ID")],
    name: Annotated[str, typer.Argument(help="New name")],
):
    """Rename a tag."""
    with _open_catalog() as catalog:
        _show_tags([catalog.tags.update(id, {"name": name})])


@tag_app.command("delete")
def tag_delete(id: Annotated[str, typer.Argument(help="Tag ID")]):
    """Delete a tag. Items keep the tag ID."""
    with _open_catalog() as catalog:
        catalog.tags.delete(id)
        typer.echo(f"Deleted tag: {id}", err=True)


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------

setting_app = typer.Typer(name="setting", help="Read and write settings.", rich_markup_mode=None)
app.add_typer(setting_app)


@setting_app.command("list")
def setting_list():
    """Show all settings."""
    with _open_catalog() as catalog:
        values = catalog.settings.all()
        if _get_json_output():
            _echo_json(values)
            return
        for key, value in values.items():
            typer.echo(f"{key} = {json.dumps(value, ensure_ascii=False)}")


@setting_app.command("get")
def setting_get(key: Annotated[str, typer.Argument(help="Setting key")]):
    """Show one setting as JSON."""
    with _open_catalog() as catalog:
        typer.echo(json.dumps(catalog.get_setting(key), ensure_ascii=False))


@setting_app.command("set")
def setting_set(
    key: Annotated[str, typer.Argument(help="Setting key")],
    value: Annotated[str, typer.Argument(help="JSON value (bare text is stored as a string)")],
):
    """Write one setting."""
    with _open_catalog() as catalog:
        catalog.set_setting(key, _parse_value(value))


@setting_app.command("delete")
def setting_delete(key: Annotated[str, typer.Argument(help="Setting key")]):
    """Remove one setting."""
    with _open_catalog() as catalog:
        catalog.settings.delete(key)


# -----------------------------------------------------------------------------
# MCP server
# -----------------------------------------------------------------------------

@app.command("mcp")
def mcp_server():
    """Serve the catalog as MCP tools over stdio."""
    if _store_override is not None:
        os.environ["MEDIASHELF_STORE_PATH"] = str(_store_override)
    from .mcp import main as mcp_main
    mcp_main()


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
        log_path = log_exception(e, context="mediashelf CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
