"""
BaseService -- abstract base for revenue recognition services.

Responsibility:
    Provides the common constructor and session-handling contract for every
    service that writes.  Services receive a SQLAlchemy ``Session`` and use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Extended by the
    services in ``revrec_services``.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's transaction
      and never commit or roll back the outer transaction themselves.
      Savepoints (``session.begin_nested()``) are the only rollback a service
      may perform, and only around its own unit of work.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from revrec_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide reporting reads; those belong in
          ``revrec_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
