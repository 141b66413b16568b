"""
Module: notes_kernel.selectors.base
Responsibility: Base class for read-only query selectors, the "Q" side of
    the service/selector split.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/dtos.py.  Never imports from services/.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.
    - Selectors return frozen DTOs, never ORM instances.
    - Selectors never render artifacts.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from notes_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Contract:
        Accepts a Session from the caller and performs read-only queries.

    Non-goals:
        - Does NOT own the session or its transaction.
    """

    def __init__(self, session: Session):
        self.session = session
