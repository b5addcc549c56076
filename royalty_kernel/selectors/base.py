"""
Module: royalty_kernel.selectors.base
Responsibility: Abstract base class for the read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/types.py.  MUST NOT import from services/ or outer packages.

Invariants enforced:
    - Read-only access: selectors never add, delete, flush or commit.
    - Selectors return frozen DTOs from domain/types.py, not ORM instances.
    - The caller owns the session and its transaction scope.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from royalty_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Non-goals:
        - Defines no queries; subclasses implement the domain-specific reads.
    """

    def __init__(self, session: Session):
        self.session = session
