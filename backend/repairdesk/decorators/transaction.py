from __future__ import annotations
"""Unit-of-work decorator for service methods.

Usage:

class PurchaseReceiver:
    def __init__(self, session):
        self.session = session

    @atomic
    def receive(self, purchase_id): ...

Behavior:
  - commits ``self.session`` when the method returns;
  - rolls back on any exception, so no partial field write or movement survives;
  - storage conflicts (stale version, unique key, lock timeout) surface as ConflictRetryableError;
  - nested calls on the same service join the outer unit instead of committing early;
  - after a successful commit, queued notifications on ``self.outbox`` (if any) are dispatched.
"""
import logging
from functools import wraps

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from repairdesk.errors import ConflictRetryableError

logger = logging.getLogger(__name__)

_LOCK_MARKERS = ('database is locked', 'deadlock', 'could not serialize', 'lock timeout')


def _is_lock_error(exc: OperationalError) -> bool:
    msg = str(exc.orig if exc.orig is not None else exc).lower()
    return any(m in msg for m in _LOCK_MARKERS)


def atomic(fn):
    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        if getattr(self, '_unit_depth', 0):
            return fn(self, *args, **kwargs)
        session = self.session
        outbox = getattr(self, 'outbox', None)
        self._unit_depth = 1
        try:
            rv = fn(self, *args, **kwargs)
            session.commit()
        except StaleDataError as e:
            _abort(session, outbox)
            logger.warning('%s: concurrent modification detected', fn.__name__)
            raise ConflictRetryableError('Record was modified concurrently; retry the operation', operation=fn.__name__) from e
        except IntegrityError as e:
            _abort(session, outbox)
            logger.warning('%s: integrity conflict: %s', fn.__name__, e.orig)
            raise ConflictRetryableError('Conflicting write detected; retry the operation', operation=fn.__name__) from e
        except OperationalError as e:
            _abort(session, outbox)
            if _is_lock_error(e):
                logger.warning('%s: lock contention: %s', fn.__name__, e.orig)
                raise ConflictRetryableError('Resource busy; retry the operation', operation=fn.__name__) from e
            raise
        except Exception:
            _abort(session, outbox)
            raise
        finally:
            self._unit_depth = 0
        if outbox is not None:
            outbox.dispatch()
        return rv
    return wrapper


def _abort(session, outbox):
    session.rollback()
    if outbox is not None:
        outbox.clear()
