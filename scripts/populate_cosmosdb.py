"""
Cosmos DB Data Population Script for the Rental Returns service.

Loads the sample rental transactions into Azure Cosmos DB so the
service can run with GATEWAY_BACKEND=cosmos.

Usage:
    python scripts/populate_cosmosdb.py

Environment:
    COSMOS_ENDPOINT - Override the default Cosmos DB endpoint
    COSMOS_DATABASE - Override the default database name

Containers Required:
    - Rental_Transactions    (partition: /code) - populated with sample data
    - Rental_Returns         (partition: /id)   - created empty, written on commit
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from azure.cosmos import CosmosClient
from azure.cosmos.exceptions import CosmosHttpResponseError
from azure.identity import AzureCliCredential

# Import configuration from shared module
from shared.cosmos_config import (
    COSMOS_ENDPOINT,
    DATABASE_NAME,
    RENTAL_CONTAINERS,
    get_rental_container_config,
)

from use_cases.rental_returns.sample_data import SAMPLE_TRANSACTIONS

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def prepare_transactions() -> List[Dict[str, Any]]:
    """Prepare transactions for Cosmos DB (the code doubles as the id)."""
    items = []
    for t in SAMPLE_TRANSACTIONS:
        item = dict(t)
        item["id"] = t["code"]
        items.append(item)
    return items


def upsert_items(container, items: List[Dict[str, Any]]) -> int:
    """Upsert items into a container."""
    count = 0
    for item in items:
        try:
            container.upsert_item(item)
            count += 1
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to upsert item {item.get('id')}: {e}")
    return count


def main():
    """Populate Cosmos DB with the sample rental transactions."""
    logger.info("=" * 60)
    logger.info("Rental Returns - Cosmos DB Population Script")
    logger.info("=" * 60)
    logger.info(f"Endpoint: {COSMOS_ENDPOINT}")
    logger.info(f"Database: {DATABASE_NAME}")

    client = CosmosClient(COSMOS_ENDPOINT, credential=AzureCliCredential())

    try:
        database = client.get_database_client(DATABASE_NAME)
        database.read()
    except CosmosHttpResponseError as e:
        logger.error(f"Database '{DATABASE_NAME}' not found or access denied: {e}")
        return

    container_name, _ = get_rental_container_config("transactions")
    count = upsert_items(database.get_container_client(container_name), prepare_transactions())
    logger.info(f"  {container_name}: {count} items")

    logger.info("\n--- Azure CLI Commands to Create the Containers ---")
    for key, (name, partition_key) in RENTAL_CONTAINERS.items():
        logger.info(
            f'az cosmosdb sql container create --database-name "{DATABASE_NAME}" '
            f'--name "{name}" --partition-key-path "{partition_key}" '
            f'--account-name <account> --resource-group <group>'
        )


if __name__ == "__main__":
    main()
