"""
Use Cases Package.

Each use case is a self-contained module with its own:
- domain/: Pure business logic (models, policies, services)
- session.py: Use-case-specific session context
- gateway: Storage boundary

Available use cases:
- rental_returns: Rental return penalty computation and commit

Architecture:
Each use case follows the layered architecture pattern defined in core/.
"""

from use_cases.rental_returns import ReturnEngine, InMemoryTransactionGateway

__all__ = [
    "ReturnEngine",
    "InMemoryTransactionGateway",
]
