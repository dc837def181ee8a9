"""
Core Framework for Use Cases.

This module provides the extensible base classes and interfaces
that all use cases should implement. The layered architecture ensures:

1. Domain Layer - Pure business rules, no I/O
2. Session Layer - Per-workflow state kept between user actions

Each use case follows this pattern for consistency and reusability.
"""

from .domain import (
    DomainService,
    PolicyDecision,
    PolicyEngine,
    PolicyResult,
    ValidationError,
    Validator,
)
from .session import SessionManager, SessionContext

__all__ = [
    # Domain
    "DomainService",
    "PolicyDecision",
    "PolicyEngine",
    "PolicyResult",
    "ValidationError",
    "Validator",
    # Session
    "SessionManager",
    "SessionContext",
]
