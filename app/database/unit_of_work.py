"""
Frontera transaccional del núcleo.

Todas las operaciones que mueven dinero o inventario corren dentro de
`atomic()`: o se confirma todo (stock + estado + pagos) o no se confirma
nada. Los conflictos de versión del ORM se traducen a ConcurrencyConflict.
"""

from contextlib import contextmanager
from typing import Iterator
import logging

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.common.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Session, resource: str = "ledger") -> Iterator[Session]:
    """Ejecuta el bloque como una unidad de trabajo todo-o-nada."""
    try:
        yield db
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"Concurrency conflict on {resource}: {e}")
        raise ConcurrencyConflict(resource) from e
    except Exception:
        db.rollback()
        raise
