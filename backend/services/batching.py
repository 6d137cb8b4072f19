"""Chunked batch execution with one transaction per chunk."""

import logging
from typing import Any, Callable, Iterator, List, Optional, Sequence, TypeVar

from lib.exceptions import PartialBatchFailure
from models.domain import BatchResult
from repositories.base import UnitOfWork

logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def run_in_chunks(
    uow: UnitOfWork,
    items: Sequence[T],
    chunk_size: int,
    process_chunk: Callable[[List[T]], Optional[int]],
    result: BatchResult,
    item_id: Callable[[T], Any] = lambda item: item,
    prepare: Optional[Callable[[List[T]], Any]] = None,
) -> BatchResult:
    """
    Run ``process_chunk`` over ``items`` in chunks, each in its own transaction

    Args:
        uow: Unit of work providing ``transaction()``
        items: Work items
        chunk_size: Items per transaction
        process_chunk: Handler returning the number of records it created
        result: Accumulator updated in place
        item_id: Maps an item to the id reported when its chunk fails
        prepare: Runs on each chunk before its transaction opens; its return
            value is handed to ``process_chunk`` in place of the chunk

    Returns:
        The updated ``result``
    """
    for index, chunk in enumerate(chunked(items, chunk_size)):
        try:
            work = prepare(chunk) if prepare is not None else chunk
            with uow.transaction():
                created = process_chunk(work)
            result.succeeded += len(chunk)
            result.created += created or 0
        except Exception as e:
            failure = PartialBatchFailure(
                f"{result.operation} chunk {index} failed: {e}",
                chunk_index=index,
                item_ids=[item_id(item) for item in chunk],
                details={"error_type": type(e).__name__},
            )
            logger.error(
                failure.message,
                extra={"account_id": result.account_id, "chunk": index, "items": len(chunk)},
            )
            result.failed += len(chunk)
            result.errors.append(failure.to_dict())
        finally:
            result.processed += len(chunk)
    return result
