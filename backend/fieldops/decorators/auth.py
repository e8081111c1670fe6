from functools import wraps
from flask import abort
from flask_jwt_extended import verify_jwt_in_request
from fieldops.services.policy import has_permissions


def require_permissions(*codes: str):
    """JWT required, and every listed code must appear in the token's `perms` claim."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            if not has_permissions(*codes):
                abort(403, description=f"Missing permission: {', '.join(codes)}")
            return fn(*args, **kwargs)
        return wrapper
    return outer
