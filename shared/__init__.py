"""
Shared modules for the Rental Returns service.

This package contains shared configuration used across the application.
"""

from shared.cosmos_config import (
    COSMOS_ENDPOINT,
    DATABASE_NAME,
    RENTAL_CONTAINERS,
    RENTAL_CONTAINER_NAMES,
)

__all__ = [
    "COSMOS_ENDPOINT",
    "DATABASE_NAME",
    "RENTAL_CONTAINERS",
    "RENTAL_CONTAINER_NAMES",
]
