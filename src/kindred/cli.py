"""
Command-line interface for kindred.

Sub-commands
------------
get      – Print one item's data as JSON.
set      – Create or replace an item (``--merge`` deep-merges instead).
delete   – Delete an item by key.
list     – List stored items.
count    – Print the number of stored items.
related  – Show the items most similar to a given item.
cluster  – Print the centroid and medoid of a set of items.
compact  – Rewrite the log as a single snapshot.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from .cluster import cluster_items
from .collection import Collection, Item
from .config import Settings, open_collection
from .connections import find_connections
from .errors import KindredError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kindred",
        description="Append-only item store with embedding-based related-item lookup.",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        metavar="PATH",
        help="Directory holding collection logs (default: $KINDRED_DATA_DIR or ~/.cache/kindred).",
    )
    parser.add_argument(
        "--collection",
        default=None,
        metavar="NAME",
        help="Collection name (default: $KINDRED_COLLECTION or items).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Logging level (default: $KINDRED_LOG_LEVEL or WARNING).",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    # get
    p_get = sub.add_parser("get", help="Print an item's data.")
    p_get.add_argument("key", help="Item key.")

    # set
    p_set = sub.add_parser("set", help="Create or replace an item.")
    p_set.add_argument("key", help="Item key.")
    p_set.add_argument("data", nargs="?", help="JSON object (reads stdin if omitted).")
    p_set.add_argument(
        "--merge",
        action="store_true",
        help="Deep-merge into the existing data instead of replacing it.",
    )

    # delete
    p_delete = sub.add_parser("delete", help="Delete an item by key.")
    p_delete.add_argument("key", help="Item key.")

    # list
    p_list = sub.add_parser("list", help="List stored items.")
    p_list.add_argument(
        "--limit",
        type=int,
        default=100,
        metavar="N",
        help="Maximum number of items to show (default: 100).",
    )
    p_list.add_argument("--prefix", default=None, help="Only keys starting with this prefix.")
    p_list.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # count
    sub.add_parser("count", help="Print the number of stored items.")

    # related
    p_related = sub.add_parser("related", help="Items most similar to KEY.")
    p_related.add_argument("key", help="Source item key.")
    p_related.add_argument(
        "-n",
        "--limit",
        dest="n",
        type=int,
        default=10,
        metavar="N",
        help="Number of results to return (default: 10).",
    )
    p_related.add_argument(
        "--trim",
        action="store_true",
        help="Cut the list at the first large score gap.",
    )
    p_related.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # cluster
    p_cluster = sub.add_parser("cluster", help="Centroid and medoid of some items.")
    p_cluster.add_argument("keys", nargs="+", help="Member item keys.")

    # compact
    sub.add_parser("compact", help="Rewrite the log as a single snapshot.")

    return parser


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = Settings.from_env(
        data_dir=args.data_dir,
        collection=args.collection,
        log_level=args.log_level,
    )
    _configure_logging(settings.log_level)
    collection = open_collection(settings)

    try:
        return _run(args, collection)
    except KindredError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        collection.close()


def _run(args: argparse.Namespace, collection: Collection) -> int:
    if args.command == "get":
        item = collection.get(args.key)
        if item is None:
            print(f"Error: no item {args.key!r}.", file=sys.stderr)
            return 1
        print(json.dumps(item.data, indent=2))

    elif args.command == "set":
        raw = args.data
        if raw is None:
            raw = sys.stdin.read()
        try:
            data = json.loads(raw)
        except ValueError as exc:
            print(f"Error: invalid JSON: {exc}", file=sys.stderr)
            return 1
        if not isinstance(data, dict):
            print("Error: item data must be a JSON object.", file=sys.stderr)
            return 1
        if args.merge:
            collection.update(args.key, data)
        else:
            collection.queue_save(collection.set(Item(key=args.key, data=data)))
        print(f"Saved {args.key}.")

    elif args.command == "delete":
        if collection.delete(args.key):
            print(f"Deleted {args.key}.")
        else:
            print(f"No item {args.key!r}; nothing to delete.")

    elif args.command == "list":
        opts = {"key_starts_with": args.prefix} if args.prefix else {}
        items = list(collection.filter(limit=args.limit, **opts))
        if not items:
            print("No items stored.")
            return 0
        if args.as_json:
            print(json.dumps([{"key": i.key, "data": i.data} for i in items], indent=2))
        else:
            for item in items:
                marker = " [vec]" if item.has_vector else ""
                print(f"{item.key}{marker}")

    elif args.command == "count":
        print(len(collection))

    elif args.command == "related":
        results = find_connections(collection, args.key, limit=args.n, trim=args.trim)
        if not results:
            print("No related items found.")
            return 0
        if args.as_json:
            print(json.dumps([{"key": c.key, "score": c.score} for c in results], indent=2))
        else:
            for i, c in enumerate(results, 1):
                print(f"[{i}] {c.key} (score={c.score:.3f})")

    elif args.command == "cluster":
        result = cluster_items(collection, args.keys)
        if result is None:
            print("Error: none of the given items has a vector.", file=sys.stderr)
            return 1
        print(
            json.dumps(
                {
                    "centroid": result.centroid,
                    "medoid": result.medoid,
                    "members": sorted(result.member_keys),
                },
                indent=2,
            )
        )

    elif args.command == "compact":
        collection.flush()
        print(f"Compacted {len(collection)} item(s).")

    return 0


if __name__ == "__main__":
    sys.exit(main())
