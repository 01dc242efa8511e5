# Overview: Service-layer operations for concurrency; transaction and retry helpers.

from __future__ import annotations

import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


T = TypeVar("T")


def run_in_transaction(func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.1) -> T:
    """
    Run func and commit its writes as one unit.

    Any exception rolls the whole unit back. OperationalError (locks,
    deadlocks) and StaleDataError are retried from scratch with exponential
    backoff, so func must do its own reads rather than reuse stale objects.
    """
    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise RuntimeError("run_in_transaction exhausted without result")
