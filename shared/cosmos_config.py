"""
Azure Cosmos DB Configuration.

Centralized configuration for the Cosmos DB containers used by the rental
return gateway. Kept in one place so the application and any data loading
tools agree on names and partition keys.

Environment Variables (optional overrides):
    COSMOS_ENDPOINT - Override the default Cosmos DB endpoint
    COSMOS_DATABASE - Override the default database name
"""

import os

# =============================================================================
# COSMOS DB CONNECTION
# =============================================================================

COSMOS_ENDPOINT = os.getenv(
    "COSMOS_ENDPOINT",
    "https://localhost:8081/"
)

DATABASE_NAME = os.getenv(
    "COSMOS_DATABASE",
    "rental_pos"
)

# =============================================================================
# RENTAL DATA CONTAINERS
# =============================================================================

# Format: logical_name -> (container_name, partition_key_path)
RENTAL_CONTAINERS = {
    "transactions": ("Rental_Transactions", "/code"),
    "returns": ("Rental_Returns", "/id"),
}

# Simple container name lookup (without partition key)
RENTAL_CONTAINER_NAMES = {
    key: name for key, (name, _) in RENTAL_CONTAINERS.items()
}

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_rental_container_name(logical_name: str) -> str:
    """Get the actual container name for a logical rental container name."""
    if logical_name in RENTAL_CONTAINER_NAMES:
        return RENTAL_CONTAINER_NAMES[logical_name]
    return logical_name


def get_rental_container_config(logical_name: str) -> tuple:
    """Get (container_name, partition_key_path) for a rental container."""
    if logical_name in RENTAL_CONTAINERS:
        return RENTAL_CONTAINERS[logical_name]
    raise ValueError(f"Unknown rental container: {logical_name}")
