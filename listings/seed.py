"""Operator utilities: seed listings, top up credits, inspect users.

Usage:
    # Load sample listings (published) into the configured store
    python -m listings.seed seed

    # Load a different listings file
    python -m listings.seed seed --data path/to/listings.json

    # Reset every user's balance to 10 credits
    python -m listings.seed add-credits --amount 10

    # Print users with balances and session state
    python -m listings.seed users

The store comes from MONGODB_URI (see rentbot.config); without it the
commands run against a throwaway in-memory store.
"""

import argparse
import asyncio
import json
from pathlib import Path

from rentbot.config import Settings, settings
from rentbot.models import Listing
from rentbot.repository import Repository
from rentbot.store import MemoryRecordStore, RecordStore
from rentbot.store.base import DuplicateKeyError

SAMPLE_DIR = Path(__file__).parent / "sample_data"


def load_listings(data_path: str | Path | None = None) -> list[Listing]:
    """Read listings from JSON arrays; every listing is marked published.

    Without ``data_path`` every file in sample_data/ is loaded.
    """
    paths = [Path(data_path)] if data_path else sorted(SAMPLE_DIR.glob("*.json"))
    listings: list[Listing] = []
    for path in paths:
        with open(path) as f:
            raw = json.load(f)
        listings.extend(Listing(**{**item, "published": True}) for item in raw)
    return listings


async def open_store(cfg: Settings) -> RecordStore:
    if cfg.mongodb_uri:
        from rentbot.store.mongo import MongoRecordStore

        mongo = MongoRecordStore(cfg.mongodb_uri, cfg.mongodb_db_name)
        await mongo.ensure_collections()
        return mongo
    print("MONGODB_URI not set; using an in-memory store (changes are not kept)")
    return MemoryRecordStore()


async def seed_listings(repo: Repository, data_path: str | Path | None = None) -> int:
    """Insert listings, skipping ids that already exist.  Returns the number inserted."""
    listings = load_listings(data_path)
    print(f"Loaded {len(listings)} listings from {data_path or SAMPLE_DIR}")
    inserted = 0
    for listing in listings:
        try:
            await repo.insert_listing(listing)
        except DuplicateKeyError:
            print(f"  Skipped (exists): {listing.id}")
            continue
        inserted += 1
        print(f"  Seeded: {listing.id} {listing.title} ({listing.suburb})")
    print(f"Done: {inserted} listings seeded")
    return inserted


async def add_credits(repo: Repository, amount: int) -> int:
    """Set every user's balance to ``amount``.  Returns the number of users."""
    count = await repo.set_all_credits(amount)
    print(f"Set {count} users to {amount} credits")
    return count


async def print_users(repo: Repository) -> int:
    users = await repo.list_users()
    for user in users:
        flags = " opted-out" if user.opted_out else ""
        session = f" session={user.draft_status}" if user.has_session else ""
        print(f"  {user.phone}: {user.credits} credits{flags}{session}")
    print(f"{len(users)} users")
    return len(users)


async def run(args: argparse.Namespace, cfg: Settings = settings) -> None:
    store = await open_store(cfg)
    repo = Repository(store, starting_credits=cfg.starting_credits)
    try:
        if args.command == "seed":
            await seed_listings(repo, args.data)
        elif args.command == "add-credits":
            await add_credits(repo, args.amount)
        elif args.command == "users":
            await print_users(repo)
    finally:
        await store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="RentBot operator utilities",
        prog="python -m listings.seed",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    seed = sub.add_parser("seed", help="Load published listings from a JSON file")
    seed.add_argument(
        "--data",
        help="Path to a listings JSON file (default: every file in sample_data/)",
    )

    credits = sub.add_parser("add-credits", help="Set every user's credit balance")
    credits.add_argument("--amount", type=int, required=True, help="New balance for all users")

    sub.add_parser("users", help="List users")
    return parser


def main():
    args = build_parser().parse_args()
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
