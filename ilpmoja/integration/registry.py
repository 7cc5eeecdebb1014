"""
Correlation registry for in-flight round trips.

Maps a transaction id to exactly one pending waiter. The waiter is completed
by the inbound PUT that carries the counterparty's answer and is removed from
the registry the moment it is completed.
"""

"""
Copyright (c) 2025 Firefly Software Solutions Inc.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at:

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from ..core.errors import DuplicateRegistration, ReplyRejected
from ..core.packets import IlpFulfill, IlpReject, IlpReply


@dataclass
class PendingWaiter:
    """Placeholder for a round trip that has not been answered yet."""

    transaction_id: str
    future: asyncio.Future
    created_at: float = field(default_factory=time.monotonic)

    @property
    def done(self) -> bool:
        return self.future.done()

    def resolve(self, reply: IlpReply) -> bool:
        """Complete with a reply. Returns False if already completed."""
        if self.future.done():
            return False
        if isinstance(reply, IlpReject):
            self.future.set_exception(ReplyRejected(reply))
        else:
            self.future.set_result(reply)
        return True

    def reject(self, cause: BaseException) -> bool:
        """Fail with an exception. Returns False if already completed."""
        if self.future.done():
            return False
        self.future.set_exception(cause)
        return True

    async def wait(self, timeout: Optional[float] = None) -> IlpFulfill:
        """
        Wait for the fulfillment.

        Raises:
            ReplyRejected: If the round trip was answered with a reject
            asyncio.TimeoutError: If no answer arrives within ``timeout``
        """
        return await asyncio.wait_for(asyncio.shield(self.future), timeout)


class CorrelationRegistry:
    """
    Registry of pending waiters keyed by transaction id.

    All methods must be called from the event loop that owns the registry;
    the loop serializes access so no lock is needed.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._waiters: Dict[str, PendingWaiter] = {}
        self._logger = logger or logging.getLogger(__name__)

    def __contains__(self, transaction_id: str) -> bool:
        return transaction_id in self._waiters

    def __len__(self) -> int:
        return len(self._waiters)

    @property
    def pending_ids(self):
        return list(self._waiters)

    def register(self, transaction_id: str) -> PendingWaiter:
        """
        Create a waiter for a transaction id.

        Raises:
            DuplicateRegistration: If a waiter for the id is already pending
        """
        if transaction_id in self._waiters:
            raise DuplicateRegistration(
                f"a round trip for transaction {transaction_id} is already in flight"
            )

        loop = asyncio.get_running_loop()
        waiter = PendingWaiter(transaction_id=transaction_id, future=loop.create_future())
        self._waiters[transaction_id] = waiter
        self._logger.debug(
            f"registered waiter for transactionId={transaction_id}",
            extra={"transaction_id": transaction_id, "pending": len(self._waiters)},
        )
        return waiter

    def resolve(self, transaction_id: str, reply: IlpReply) -> bool:
        """
        Complete the waiter for ``transaction_id`` with an ILP reply.

        A fulfill resolves the waiter, a reject fails it with ReplyRejected.
        Unknown or already completed ids are dropped.

        Returns:
            True if a waiter was completed
        """
        waiter = self._waiters.pop(transaction_id, None)
        if waiter is None:
            self._logger.warning(
                f"dropping reply for unknown or completed transactionId={transaction_id}",
                extra={"transaction_id": transaction_id},
            )
            return False

        delivered = waiter.resolve(reply)
        self._logger.debug(
            f"resolved waiter for transactionId={transaction_id} "
            f"with {type(reply).__name__}",
            extra={"transaction_id": transaction_id},
        )
        return delivered

    def reject(self, transaction_id: str, cause: BaseException) -> bool:
        """Fail the waiter for ``transaction_id``. Unknown ids are dropped."""
        waiter = self._waiters.pop(transaction_id, None)
        if waiter is None:
            self._logger.warning(
                f"dropping rejection for unknown or completed transactionId={transaction_id}",
                extra={"transaction_id": transaction_id},
            )
            return False
        return waiter.reject(cause)

    def discard(self, transaction_id: str, waiter: Optional[PendingWaiter] = None) -> None:
        """Remove a waiter without completing it (e.g. after its deadline)."""
        current = self._waiters.get(transaction_id)
        if current is not None and (waiter is None or current is waiter):
            del self._waiters[transaction_id]
            current.future.cancel()

    def fail_all(self, cause: BaseException) -> int:
        """Fail every pending waiter with ``cause``. Returns the number failed."""
        waiters = list(self._waiters.values())
        self._waiters.clear()
        for waiter in waiters:
            waiter.reject(cause)
        if waiters:
            self._logger.info(f"failed {len(waiters)} pending waiters: {cause}")
        return len(waiters)
