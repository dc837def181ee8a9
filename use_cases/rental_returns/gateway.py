"""
Transaction Gateway.

The boundary between the return engine and wherever rental transactions
live. The engine only ever talks to a TransactionGateway; the in-memory
implementation here backs local runs and tests, the Cosmos DB one lives
in cosmos_gateway.py.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .domain.models import RentalTransaction, ReturnedStatus
from .domain.services import ReturnRequest
from .errors import AlreadyReturnedError, GatewayError, TransactionNotFoundError

logger = logging.getLogger(__name__)

# Transaction status once every line has been brought back
RETURNED_STATUS = "returned"


@dataclass
class CommitResult:
    """Outcome of committing a return."""
    success: bool
    transaction_code: str
    items_processed: int = 0
    total_penalty: int = 0
    message: str = ""
    processing_mode: Optional[str] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "transaction_code": self.transaction_code,
            "items_processed": self.items_processed,
            "total_penalty": self.total_penalty,
            "message": self.message,
            "processing_mode": self.processing_mode,
            "errors": list(self.errors),
        }


class TransactionGateway(ABC):
    """Read rental transactions and record returns against them."""

    @abstractmethod
    async def get_transaction(self, code: str) -> RentalTransaction:
        """
        Fetch a transaction by code.

        Raises:
            TransactionNotFoundError: If no transaction has that code
            GatewayError: On any transport or server failure
        """
        pass

    @abstractmethod
    async def commit_return(self, request: ReturnRequest) -> CommitResult:
        """
        Record a return.

        Raises:
            AlreadyReturnedError: If the transaction was already fully returned
            TransactionNotFoundError: If no transaction has that code
            GatewayError: On any transport or server failure
        """
        pass

    async def close(self):
        """Release any held resources."""
        pass


def apply_return(transaction: RentalTransaction, request: ReturnRequest) -> int:
    """
    Mark the lines named in ``request`` as returned.

    A line is complete only when every unit it went out with came back;
    fewer units leave it partial and still returnable. Returns the number
    of lines updated. The transaction status flips to returned once no
    line is left out.
    """
    processed = 0
    for item in request.items:
        line = transaction.get_line(item["line_id"])
        if line is None or not line.is_returnable:
            continue
        returned = item.get("returned_quantity", line.quantity_taken_out)
        if returned <= 0:
            continue
        if returned >= line.quantity_taken_out:
            line.already_returned_status = ReturnedStatus.COMPLETE
        else:
            line.already_returned_status = ReturnedStatus.PARTIAL
        processed += 1
    if not transaction.returnable_lines:
        transaction.status = RETURNED_STATUS
    return processed


def is_fully_returned(transaction: RentalTransaction) -> bool:
    return transaction.status == RETURNED_STATUS or not transaction.returnable_lines


class InMemoryTransactionGateway(TransactionGateway):
    """
    Dictionary-backed gateway.

    Args:
        transactions: Initial transactions (deep-copied)
        delay: Seconds each call sleeps, to simulate network latency
    """

    def __init__(self, transactions: Iterable[RentalTransaction] = (), delay: float = 0.0):
        self._transactions: Dict[str, RentalTransaction] = {
            tx.code: copy.deepcopy(tx) for tx in transactions
        }
        self.delay = delay
        self.commit_calls = 0
        self.committed: List[ReturnRequest] = []
        # Set to make the next commit fail once with a GatewayError
        self.fail_next: Optional[str] = None

    def add(self, transaction: RentalTransaction):
        self._transactions[transaction.code] = copy.deepcopy(transaction)

    async def get_transaction(self, code: str) -> RentalTransaction:
        if self.delay:
            await asyncio.sleep(self.delay)
        transaction = self._transactions.get(code)
        if transaction is None:
            raise TransactionNotFoundError(code)
        return copy.deepcopy(transaction)

    async def commit_return(self, request: ReturnRequest) -> CommitResult:
        self.commit_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)

        if self.fail_next:
            message, self.fail_next = self.fail_next, None
            raise GatewayError(message, status_code=503)

        transaction = self._transactions.get(request.transaction_code)
        if transaction is None:
            raise TransactionNotFoundError(request.transaction_code)
        if is_fully_returned(transaction):
            raise AlreadyReturnedError(request.transaction_code)

        processed = apply_return(transaction, request)
        self.committed.append(request)
        logger.info(
            f"Return recorded for {request.transaction_code}: "
            f"{processed} line(s), penalty {request.total_penalty}"
        )
        return CommitResult(
            success=True,
            transaction_code=request.transaction_code,
            items_processed=processed,
            total_penalty=request.total_penalty,
            message="Return recorded",
            processing_mode=request.processing_mode.value,
        )
