#!/usr/bin/env python3
"""
Knowledge Reset Script

Clears stored knowledge so sources can be re-ingested from scratch.

Usage:
    python scripts/reset_knowledge.py [--collection knowledge] [--db-path PATH]
    python scripts/reset_knowledge.py --all
    python scripts/reset_knowledge.py --list
"""

import sys
import logging
import argparse
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reset crew knowledge collections")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--collection", type=str, default=None, help="Collection to clear (default from config)")
    group.add_argument("--all", action="store_true", help="Clear every collection in the store")
    group.add_argument("--list", action="store_true", help="List collections and record counts")
    parser.add_argument("--db-path", type=str, default=None, help="Knowledge database (default from config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    from knowledge.common.config import load_config
    from knowledge.common.knowledge_store import KnowledgeStore

    config = load_config()
    db_path = args.db_path or config.storage.db_path

    with KnowledgeStore(db_path) as store:
        if args.list:
            names = store.list_collections()
            if not names:
                print("[Reset] No collections")
                return 0
            for name in names:
                info = store.collection_info(name)
                print(f"{name}\t{info['count']} records\t{info['provider'] or '-'}\tdim={info['dimension']}")
            return 0

        if args.all:
            removed = store.clear_all()
            print(f"[Reset] Cleared all collections ({removed} records)")
            return 0

        collection = args.collection or config.storage.collection_name
        removed = store.clear(collection)
        print(f"[Reset] Cleared collection '{collection}' ({removed} records)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
