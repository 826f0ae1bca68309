from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from user_index.config import get_settings
from user_index.db.session import dispose_engine, session_scope
from user_index.errors import DocumentNotFoundError, SyncError
from user_index.fetcher import DataFetcher
from user_index.index import UserIndexClient
from user_index.index.query import validate_uuid
from user_index.repositories import user_records


logger = logging.getLogger("user_index.reindex")


def _user_id_batches(batch_size: int, limit: Optional[int]) -> List[List[str]]:
    batches: List[List[str]] = []
    offset = 0
    remaining = limit
    while remaining is None or remaining > 0:
        take = batch_size if remaining is None else min(batch_size, remaining)
        with session_scope() as session:
            user_ids = user_records.list_user_ids(session, limit=take, offset=offset)
        if not user_ids:
            break
        batches.append(user_ids)
        offset += len(user_ids)
        if remaining is not None:
            remaining -= len(user_ids)
    return batches


async def reindex_batch(fetcher: DataFetcher, index: UserIndexClient, user_ids: Sequence[str]) -> Dict[str, int]:
    operations = []
    skipped = 0
    for user_id in user_ids:
        try:
            document = await fetcher.comprehensive_sync(user_id)
        except DocumentNotFoundError:
            logger.warning("User %s disappeared before it could be reindexed", user_id)
            skipped += 1
            continue
        operations.append({"_op_type": "index", "_id": user_id, "_source": document.to_payload()})
    summary = await index.bulk(operations)
    for error in summary.errors:
        logger.warning("Bulk index failure: %s", error)
    return {"indexed": summary.succeeded, "failed": len(summary.errors), "skipped": skipped}


async def run(user_ids: Sequence[str], batch_size: int, limit: Optional[int]) -> Dict[str, int]:
    settings = get_settings()
    settings.validate_startup()
    index = UserIndexClient.from_settings(settings)
    fetcher = DataFetcher.from_settings(settings)
    totals = {"indexed": 0, "failed": 0, "skipped": 0}
    try:
        await index.ensure_index()
        if user_ids:
            batches = [list(user_ids[start : start + batch_size]) for start in range(0, len(user_ids), batch_size)]
        else:
            batches = await asyncio.to_thread(_user_id_batches, batch_size, limit)
        for number, batch in enumerate(batches, start=1):
            result = await reindex_batch(fetcher, index, batch)
            for key, value in result.items():
                totals[key] += value
            logger.info("Batch %d: %d indexed, %d failed, %d skipped", number, *result.values())
    finally:
        await index.close()
        dispose_engine()
    return totals


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rebuild user documents in the search index from their sources.")
    parser.add_argument("--user-id", dest="user_ids", action="append", default=[], help="Reindex only this user.")
    parser.add_argument("--batch-size", type=int, default=100)
    parser.add_argument("--limit", type=int, default=None, help="Stop after this many users.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = parse_args(argv)
    if args.batch_size < 1:
        logger.error("--batch-size must be positive")
        return 2
    try:
        user_ids = [validate_uuid(user_id, "userId") for user_id in args.user_ids]
        totals = asyncio.run(run(user_ids, args.batch_size, args.limit))
    except SyncError as exc:
        logger.error("Reindex aborted: %s", exc)
        return 1
    logger.info(
        "Reindex completed: %d indexed, %d failed, %d skipped",
        totals["indexed"],
        totals["failed"],
        totals["skipped"],
    )
    return 0 if totals["failed"] == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
