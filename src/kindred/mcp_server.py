"""
MCP (Model Context Protocol) server for kindred.

Exposes a collection as a set of tools so that an assistant can read and
write items and look up related ones.

Run as a stdio server:
    python -m kindred.mcp_server

Or via the installed entry-point:
    kindred-mcp

Configuration comes from the environment (see :mod:`kindred.config`).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .collection import Collection, Item
from .config import Settings, open_collection
from .connections import cache_for, find_connections
from .embed import EmbeddingFunction, embed_pending, embed_query, get_embedding_function
from .errors import KindredError

# Lazy-initialised singletons so the log is replayed and the embedding model
# loaded only once.
_collection: Collection | None = None
_embedding_function: EmbeddingFunction | None = None


def _get_collection() -> Collection:
    global _collection
    if _collection is None:
        _collection = open_collection(Settings.from_env())
    return _collection


def _get_embedding_function() -> EmbeddingFunction:
    global _embedding_function
    if _embedding_function is None:
        _embedding_function = get_embedding_function(Settings.from_env().model)
    return _embedding_function


# ---------------------------------------------------------------------------
# FastMCP server
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "kindred",
    instructions=(
        "Keyed item store with related-item lookup. "
        "Use `set_item` to create or update an item and `get_item` to read one. "
        "Use `embed_items` after adding text so items can be compared. "
        "Use `find_related` to list items similar to a given item, and "
        "`search_items` to find items similar to free text. "
        "Use `list_items`, `count_items` and `delete_item` to manage the store."
    ),
)


@mcp.tool()
def get_item(key: str) -> str:
    """
    Return one item's data.

    Args:
        key: The item key.

    Returns:
        The item data as JSON, or a not-found message.
    """
    item = _get_collection().get(key)
    if item is None:
        return f"No item {key!r}."
    return json.dumps(item.data, indent=2)


@mcp.tool()
def set_item(key: str, data: dict[str, Any], merge: bool = True) -> str:
    """
    Create or update an item.

    Args:
        key:   The item key.
        data:  JSON object with the item's fields.
        merge: Deep-merge into existing data (default) instead of replacing.

    Returns:
        A confirmation message.
    """
    collection = _get_collection()
    try:
        if merge:
            collection.update(key, data)
        else:
            collection.queue_save(collection.set(Item(key=key, data=dict(data))))
    except KindredError as exc:
        return f"Error: {exc}"
    # Any item may list this one as a neighbour.
    cache_for(collection).clear()
    return f"Saved {key}."


@mcp.tool()
def delete_item(key: str) -> str:
    """
    Delete an item by key.

    Args:
        key: The item key.

    Returns:
        A confirmation message.
    """
    collection = _get_collection()
    existed = collection.delete(key)
    cache_for(collection).clear()
    return f"Deleted {key}." if existed else f"No item {key!r}."


@mcp.tool()
def list_items(limit: int = 50, prefix: str = "") -> str:
    """
    List stored item keys (no ranking applied).

    Args:
        limit:  Maximum number of keys to return (default 50).
        prefix: Only keys starting with this value.

    Returns:
        JSON array of ``{"key", "has_vector"}`` entries.
    """
    opts = {"key_starts_with": prefix} if prefix else {}
    items = list(_get_collection().filter(limit=limit, **opts))
    if not items:
        return "No items stored."
    return json.dumps([{"key": i.key, "has_vector": i.has_vector} for i in items], indent=2)


@mcp.tool()
def count_items() -> str:
    """
    Return the number of stored items.

    Returns:
        A short message with the count.
    """
    n = len(_get_collection())
    return f"{n} {'item' if n == 1 else 'items'} stored."


@mcp.tool()
def find_related(key: str, limit: int = 10, trim: bool = False) -> str:
    """
    List the items most similar to an existing item.

    Args:
        key:   Source item key.
        limit: Maximum number of results (default 10).
        trim:  Cut the list at the first large drop in similarity.

    Returns:
        JSON array of ``{"key", "score"}`` entries.
    """
    try:
        results = find_connections(_get_collection(), key, limit=limit, trim=trim)
    except KindredError as exc:
        return f"Error: {exc}"
    if not results:
        return "No related items found."
    return json.dumps([{"key": c.key, "score": round(c.score, 4)} for c in results], indent=2)


@mcp.tool()
def search_items(query: str, limit: int = 10) -> str:
    """
    Find items similar to a natural-language query.

    Args:
        query: Free text to search for.
        limit: Maximum number of results (default 10).

    Returns:
        JSON array of ``{"key", "score"}`` entries.
    """
    collection = _get_collection()
    if collection.dimension is None:
        return "No embedded items to search."
    vector = embed_query(query, _get_embedding_function())
    try:
        results = collection.nearest(vector, limit=limit)
    except KindredError as exc:
        return f"Error: {exc}"
    if not results:
        return "No matching items."
    return json.dumps([{"key": c.key, "score": round(c.score, 4)} for c in results], indent=2)


@mcp.tool()
def embed_items(text_field: str = "content") -> str:
    """
    Embed every item that has text but no vector yet.

    Args:
        text_field: Data field holding the item's text (default ``content``).

    Returns:
        A short message with the number of embedded items.
    """
    collection = _get_collection()
    keys = embed_pending(collection, _get_embedding_function(), text_field=text_field)
    if keys:
        cache_for(collection).clear()
    return f"Embedded {len(keys)} {'item' if len(keys) == 1 else 'items'}."


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the MCP server over stdio."""
    logging.basicConfig(level=Settings.from_env().log_level.upper())
    try:
        mcp.run(transport="stdio")
    finally:
        if _collection is not None:
            _collection.close()


if __name__ == "__main__":
    main()
