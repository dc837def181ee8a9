"""
Sample rental transactions for the in-memory gateway.

Used when GATEWAY_BACKEND=memory so the service can be exercised
without a Cosmos DB account.
"""

from typing import Any, Dict, List

from .domain.models import RentalTransaction

SAMPLE_TRANSACTIONS: List[Dict[str, Any]] = [
    {
        "code": "TXN-20250101-001",
        "status": "active",
        "customer_name": "Sari Wulandari",
        "lines": [
            {
                "line_id": "LN-001",
                "product_name": "Kebaya Modern Brokat",
                "quantity_taken_out": 3,
                "already_returned_status": "none",
                "unit_original_cost": 350000,
                "expected_return_date": "2025-01-10T00:00:00+00:00",
            },
            {
                "line_id": "LN-002",
                "product_name": "Kemeja Batik Pria",
                "quantity_taken_out": 2,
                "already_returned_status": "none",
                "unit_original_cost": 150000,
                "expected_return_date": "2025-01-10T00:00:00+00:00",
            },
        ],
    },
    {
        "code": "TXN-20250102-002",
        "status": "active",
        "customer_name": "Budi Santoso",
        "lines": [
            {
                "line_id": "LN-003",
                "product_name": "Jas Pengantin",
                "quantity_taken_out": 1,
                "already_returned_status": "none",
                "unit_original_cost": None,
                "expected_return_date": "2025-01-12T00:00:00+00:00",
            },
        ],
    },
    {
        "code": "TXN-20250103-003",
        "status": "returned",
        "customer_name": "Rina Kartika",
        "lines": [
            {
                "line_id": "LN-004",
                "product_name": "Gaun Malam",
                "quantity_taken_out": 1,
                "already_returned_status": "complete",
                "unit_original_cost": 500000,
                "expected_return_date": "2025-01-05T00:00:00+00:00",
            },
        ],
    },
    {
        "code": "TXN-20250104-004",
        "status": "cancelled",
        "customer_name": "Dewi Lestari",
        "lines": [
            {
                "line_id": "LN-005",
                "product_name": "Selendang Songket",
                "quantity_taken_out": 2,
                "already_returned_status": "none",
                "unit_original_cost": 80000,
                "expected_return_date": "2025-01-08T00:00:00+00:00",
            },
        ],
    },
]


def sample_transactions() -> List[RentalTransaction]:
    """Fresh RentalTransaction objects for every sample."""
    return [RentalTransaction.from_dict(data) for data in SAMPLE_TRANSACTIONS]
