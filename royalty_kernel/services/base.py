"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session-handling contract for every write-side
    service.  Services receive a SQLAlchemy ``Session`` and an optional
    ``Clock`` and use ``session.flush()`` -- never ``session.commit()``.

Invariants enforced:
    - Transaction boundaries belong to the caller.  A ledger post, its
      cached-balance update and its audit entry commit or roll back together
      because the service never ends the transaction itself.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from royalty_kernel.db.base import Base
from royalty_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for write-side kernel services.

    Non-goals:
        - Does NOT commit or roll back.
        - Does NOT provide reporting queries; those belong in selectors/.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
