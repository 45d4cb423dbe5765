"""
Unit of work for writes that span several documents.

Every relationship mutation (comment + post, follow on both users, soft delete
+ graph pruning) goes through ``UnitOfWork.run`` so commit and abort are
handled in one place.
"""
import logging
from typing import Any, Awaitable, Callable, List

from fastapi import HTTPException, Request


logger = logging.getLogger(__name__)

Operation = Callable[[Any], Awaitable[Any]]


class TransactionError(Exception):
    """A unit of work was aborted; nothing it wrote is visible."""


class UnitOfWork:
    def __init__(self, client):
        self.client = client

    async def run(self, *operations: Operation) -> List[Any]:
        """Run operations in order inside one transaction.

        Each operation is called with the session and must pass it to every
        driver call. Results are returned in the same order.
        """
        async with await self.client.start_session() as session:
            try:
                async with session.start_transaction():
                    return [await operation(session) for operation in operations]
            except HTTPException:
                raise
            except Exception as exc:
                logger.warning("Transaction aborted: %s", exc)
                raise TransactionError(str(exc)) from exc


def get_unit_of_work(request: Request):
    return UnitOfWork(request.app.state.mongo_client)
