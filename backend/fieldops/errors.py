from __future__ import annotations
"""Domain error taxonomy for the dispatch engine.

Every service-level rejection raises one of these before any mutation is flushed.
The app factory renders them with the same JSON error shape used for HTTP errors.
"""
from typing import Any, Dict, Optional


class DispatchError(Exception):
    status_code = 400
    title = 'Dispatch Error'

    def __init__(self, detail: str, **extra: Any):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra

    def to_payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            'status': self.status_code,
            'title': self.title,
            'detail': self.detail,
            'type': type(self).__name__,
        }
        if self.extra:
            body.update(self.extra)
        return {'error': body}


class ValidationError(DispatchError):
    """Malformed input or a missing mandatory reason."""
    status_code = 400
    title = 'Validation Failed'


class NotFound(DispatchError):
    status_code = 404
    title = 'Not Found'


class StateError(DispatchError):
    """Illegal transition or wrong actor for the ticket."""
    status_code = 409
    title = 'Invalid State'


class WorkflowPausedError(StateError):
    status_code = 423
    title = 'Workflow Paused'


class GeofenceError(DispatchError):
    status_code = 422
    title = 'Outside Geofence'

    def __init__(self, detail: str, distance_m: Optional[float] = None, radius_m: Optional[float] = None):
        extra = {}
        if distance_m is not None:
            extra['distance_m'] = round(distance_m, 1)
        if radius_m is not None:
            extra['radius_m'] = radius_m
        super().__init__(detail, **extra)
        self.distance_m = distance_m
        self.radius_m = radius_m


class NotRollbackable(DispatchError):
    status_code = 409
    title = 'Not Rollbackable'


class ConcurrentUpdateError(DispatchError):
    status_code = 409
    title = 'Concurrent Update'


__all__ = [
    'DispatchError', 'ValidationError', 'NotFound', 'StateError', 'WorkflowPausedError',
    'GeofenceError', 'NotRollbackable', 'ConcurrentUpdateError',
]
