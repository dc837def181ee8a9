"""
Cosmos DB Transaction Gateway.

Reads rental transactions from the Rental_Transactions container and
records each committed return in Rental_Returns, flipping the returned
lines on the transaction document.
Uses DefaultAzureCredential for flexible authentication.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from azure.core import MatchConditions
from azure.cosmos import CosmosClient
from azure.cosmos.exceptions import (
    CosmosAccessConditionFailedError,
    CosmosHttpResponseError,
    CosmosResourceNotFoundError,
)
from azure.identity import DefaultAzureCredential

# Import shared configuration
from shared.cosmos_config import (
    COSMOS_ENDPOINT,
    DATABASE_NAME,
    get_rental_container_name,
)

from .domain.models import RentalTransaction
from .domain.services import ReturnRequest
from .errors import AlreadyReturnedError, GatewayError, TransactionNotFoundError
from .gateway import CommitResult, TransactionGateway, apply_return, is_fully_returned

logger = logging.getLogger(__name__)

# Reads plus conditional replaces tried before giving up on a busy document
COMMIT_ATTEMPTS = 2


class CosmosTransactionGateway(TransactionGateway):
    """Transaction gateway backed by Azure Cosmos DB."""

    def __init__(self, endpoint: str = COSMOS_ENDPOINT, database_name: str = DATABASE_NAME):
        """
        Initialize the Cosmos DB client.

        Args:
            endpoint: Cosmos DB endpoint URL
            database_name: Database name
        """
        logger.info("Initializing rental Cosmos DB client...")
        self._credential = DefaultAzureCredential(
            exclude_interactive_browser_credential=False,
            exclude_shared_token_cache_credential=False,
        )
        self._client = CosmosClient(endpoint, credential=self._credential)
        self._database = self._client.get_database_client(database_name)
        self._containers = {}
        logger.info(f"Connected to Cosmos DB: {database_name}")

    def _get_container(self, name: str):
        """Get a container client, caching for reuse."""
        if name not in self._containers:
            container_name = get_rental_container_name(name)
            self._containers[name] = self._database.get_container_client(container_name)
        return self._containers[name]

    def _read_document(self, code: str) -> Dict[str, Any]:
        container = self._get_container("transactions")
        try:
            return container.read_item(item=code, partition_key=code)
        except CosmosResourceNotFoundError:
            raise TransactionNotFoundError(code) from None
        except CosmosHttpResponseError as e:
            logger.error(f"Error reading transaction {code}: {e}")
            raise GatewayError(f"Could not load transaction {code}", status_code=e.status_code) from e

    def _replace_with_return(self, code: str, request: ReturnRequest) -> int:
        """
        Apply the return to the transaction document with an etag-conditional replace.

        A conflicting write means the document changed, not that this return
        was recorded: it is re-read, and only a fully returned document counts
        as already returned. Otherwise the replace is retried once.
        """
        for attempt in range(1, COMMIT_ATTEMPTS + 1):
            document = self._read_document(code)
            transaction = RentalTransaction.from_dict(document)
            if is_fully_returned(transaction):
                raise AlreadyReturnedError(code)

            processed = apply_return(transaction, request)
            updated = {**document, **transaction.to_dict()}
            try:
                self._get_container("transactions").replace_item(
                    item=document["id"],
                    body=updated,
                    etag=document.get("_etag"),
                    match_condition=MatchConditions.IfNotModified,
                )
                return processed
            except CosmosAccessConditionFailedError:
                logger.warning(f"Transaction {code} changed during commit (attempt {attempt})")
            except CosmosHttpResponseError as e:
                logger.error(f"Error updating transaction {code}: {e}")
                raise GatewayError(f"Could not record return for {code}", status_code=e.status_code) from e

        raise GatewayError(f"Transaction {code} kept changing during commit, try again", status_code=409)

    # =========================================================================
    # GATEWAY OPERATIONS
    # =========================================================================

    async def get_transaction(self, code: str) -> RentalTransaction:
        return RentalTransaction.from_dict(self._read_document(code))

    async def commit_return(self, request: ReturnRequest) -> CommitResult:
        code = request.transaction_code
        processed = self._replace_with_return(code, request)

        return_record = {
            "id": f"RET-{uuid.uuid4().hex[:8].upper()}",
            **request.to_dict(),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._get_container("returns").create_item(return_record)
        except CosmosHttpResponseError as e:
            # The transaction already reflects the return; the record is an audit trail
            logger.error(f"Return {return_record['id']} for {code} not archived: {e}")

        logger.info(f"Return {return_record['id']} recorded for {code}: {processed} line(s)")
        return CommitResult(
            success=True,
            transaction_code=code,
            items_processed=processed,
            total_penalty=request.total_penalty,
            message=f"Return {return_record['id']} recorded",
            processing_mode=request.processing_mode.value,
        )
