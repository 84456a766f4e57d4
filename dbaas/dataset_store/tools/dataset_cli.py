"""
Dataset administration CLI.

This tool runs store operations directly against the database file:
- init: Create the schema
- get: Print one dataset as JSON
- list: List datasets owned by a principal
- chown: Hand a dataset over to another owner
- publish / unpublish: Flip the publish flag
- delete: Remove a dataset (optionally checking the owner)
- import: Batch-store datasets from a JSON file (all or nothing)

Usage:
    dataset-admin --db datasets.db get 6f1c...
    dataset-admin list --owner 0a2b...
    dataset-admin import datasets.json

Invariants:
    - Store errors map to exit code 1, bad arguments to 2
    - Output is JSON for machine consumption
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import uuid
from typing import Any, Optional, Sequence

from ..config import StoreSettings
from ..errors import DatasetStoreError
from ..main import StoreService, setup_logging
from ..models.dataset import Dataset
from ..storage import DatasetStore

logger = logging.getLogger(__name__)


class ImportFileError(Exception):
    """Raised when an import file cannot be read or has malformed entries."""


class DatasetCLI:
    """Command implementations on top of a started DatasetStore."""

    def __init__(self, store: DatasetStore) -> None:
        self.store = store

    def get(self, dataset_id: uuid.UUID, owner: Optional[uuid.UUID] = None) -> dict[str, Any]:
        if owner is not None:
            return self.store.get_with_owner(dataset_id, owner).to_dict()
        return self.store.get(dataset_id).to_dict()

    def list(self, owner: uuid.UUID) -> list[dict[str, Any]]:
        return [d.to_dict(include_blob=False) for d in self.store.list_all_for_uid(owner)]

    def chown(self, dataset_id: uuid.UUID, new_owner: uuid.UUID) -> None:
        self.store.change_owner_to(dataset_id, new_owner)

    def publish(self, dataset_id: uuid.UUID, published: bool, owner: Optional[uuid.UUID] = None) -> None:
        if owner is not None:
            self.store.mark_published_with_owner(dataset_id, owner, published)
        else:
            self.store.mark_published(dataset_id, published)

    def delete(self, dataset_id: uuid.UUID, owner: Optional[uuid.UUID] = None) -> None:
        self.store.delete(dataset_id, owner)

    def import_file(self, path: str) -> int:
        """Batch-store datasets from a JSON list.

        Each entry needs ``family``, ``schema``, ``blob`` and ``creator``;
        ``id`` and ``owner`` are optional.

        Returns:
            Number of stored datasets

        Raises:
            ImportFileError: If the file is unreadable or an entry is malformed
        """
        try:
            with open(path) as f:
                entries = json.load(f)
        except OSError as e:
            raise ImportFileError(f"Cannot read {path}: {e}") from e
        except ValueError as e:
            raise ImportFileError(f"Malformed JSON in {path}: {e}") from e
        if not isinstance(entries, list):
            raise ImportFileError(f"{path} must contain a JSON list of datasets")

        datasets = []
        for n, entry in enumerate(entries, start=1):
            try:
                datasets.append(
                    Dataset.create(
                        family=entry["family"],
                        schema=entry["schema"],
                        blob=json.dumps(entry["blob"]),
                        creator=uuid.UUID(entry["creator"]),
                        owner=uuid.UUID(entry["owner"]) if entry.get("owner") else None,
                        id=uuid.UUID(entry["id"]) if entry.get("id") else None,
                        families=self.store.families,
                    )
                )
            except KeyError as e:
                raise ImportFileError(f"Entry {n} is missing {e}") from e
            except (TypeError, ValueError) as e:
                raise ImportFileError(f"Entry {n} is malformed: {e}") from e

        self.store.batch_store(datasets)
        return len(datasets)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dataset-admin", description="Dataset store administration tool")
    parser.add_argument("--db", help="SQLite database file (default: DATASETDB_DB_PATH)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create the database schema")

    get_parser = subparsers.add_parser("get", help="Print a dataset as JSON")
    get_parser.add_argument("id", type=uuid.UUID)
    get_parser.add_argument("--owner", type=uuid.UUID, help="Check ownership first")

    list_parser = subparsers.add_parser("list", help="List datasets of an owner")
    list_parser.add_argument("--owner", type=uuid.UUID, required=True)

    chown_parser = subparsers.add_parser("chown", help="Change a dataset's owner")
    chown_parser.add_argument("id", type=uuid.UUID)
    chown_parser.add_argument("new_owner", type=uuid.UUID)

    for name, help_text in (("publish", "Mark a dataset published"), ("unpublish", "Mark a dataset unpublished")):
        pub_parser = subparsers.add_parser(name, help=help_text)
        pub_parser.add_argument("id", type=uuid.UUID)
        pub_parser.add_argument("--owner", type=uuid.UUID, help="Check ownership first")

    delete_parser = subparsers.add_parser("delete", help="Delete a dataset")
    delete_parser.add_argument("id", type=uuid.UUID)
    delete_parser.add_argument("--owner", type=uuid.UUID, help="Check ownership first")

    import_parser = subparsers.add_parser("import", help="Batch-store datasets from a JSON file")
    import_parser.add_argument("file")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    settings = StoreSettings(db_path=args.db) if args.db else StoreSettings()
    setup_logging(settings)

    try:
        with StoreService(settings) as store:
            cli = DatasetCLI(store)

            if args.command == "init":
                print(f"Initialized {settings.db_path}")
            elif args.command == "get":
                print(json.dumps(cli.get(args.id, args.owner), indent=2))
            elif args.command == "list":
                print(json.dumps(cli.list(args.owner), indent=2))
            elif args.command == "chown":
                cli.chown(args.id, args.new_owner)
            elif args.command in ("publish", "unpublish"):
                cli.publish(args.id, args.command == "publish", args.owner)
            elif args.command == "delete":
                cli.delete(args.id, args.owner)
            elif args.command == "import":
                count = cli.import_file(args.file)
                print(f"Imported {count} dataset(s)")
    except DatasetStoreError as e:
        print(f"{e.code}: {e.message}", file=sys.stderr)
        return 1
    except ImportFileError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
