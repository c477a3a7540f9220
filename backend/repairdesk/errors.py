"""Typed failures raised by the ticket workflow and inventory services.

Every error carries structured detail (entity kind, entity id, states, quantities)
so the HTTP layer can render a precise message without re-loading anything.
The Flask error handler in ``repairdesk.__init__`` turns these into the standard
``{'error': {...}}`` JSON shape using ``status_code`` and ``title``.
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, Optional


class RepairDeskError(Exception):
    status_code = 400
    title = 'Bad Request'
    retryable = False

    def __init__(self, message: str, **detail: Any):
        super().__init__(message)
        self.message = message
        self.detail = {k: v for k, v in detail.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            'status': self.status_code,
            'title': self.title,
            'detail': self.message,
        }
        out.update(self.detail)
        if self.retryable:
            out['retryable'] = True
        return out


class NotFoundError(RepairDeskError):
    status_code = 404
    title = 'Not Found'

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f'{entity} {entity_id} not found', entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(RepairDeskError):
    title = 'Invalid Transition'

    def __init__(self, current: str, attempted: str, allowed: Iterable[str],
                 entity: Optional[str] = None, entity_id: Any = None, field_name: str = 'status'):
        allowed_sorted = sorted(allowed)
        allowed_txt = ', '.join(allowed_sorted) if allowed_sorted else 'none (final state)'
        super().__init__(
            f'Invalid {field_name} transition {current} -> {attempted}; allowed from {current}: {allowed_txt}',
            entity=entity,
            entity_id=entity_id,
            current_state=current,
            attempted_state=attempted,
            allowed_states=allowed_sorted,
        )
        self.current = current
        self.attempted = attempted
        self.allowed = allowed_sorted


class PreconditionFailedError(RepairDeskError):
    title = 'Precondition Failed'


class InsufficientStockError(RepairDeskError):
    status_code = 409
    title = 'Insufficient Stock'

    def __init__(self, part_id: int, part_code: str, available: int, requested: int):
        super().__init__(
            f'Insufficient stock for part {part_code}: available {available}, requested {requested}',
            entity='Part',
            entity_id=part_id,
            part_code=part_code,
            available=available,
            requested=requested,
        )
        self.part_id = part_id
        self.available = available
        self.requested = requested


class ConflictRetryableError(RepairDeskError):
    status_code = 409
    title = 'Conflict'
    retryable = True


__all__ = [
    'RepairDeskError', 'NotFoundError', 'InvalidTransitionError', 'PreconditionFailedError',
    'InsufficientStockError', 'ConflictRetryableError',
]
