"""Authorization decorators for role-based access control."""
from functools import wraps

from flask import current_app, request
from flask_login import current_user

from extensions import db
from models import AuditLog
from utils.errors import AuthenticationRequired, PermissionDenied


def roles_required(*roles):
    allowed = {r.lower() for r in roles}

    def decorator(view_func):
        @wraps(view_func)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                raise AuthenticationRequired("Sign in to continue")
            if current_user.role_name.lower() in allowed:
                return view_func(*args, **kwargs)

            current_app.logger.warning(
                "Unauthorized role access attempt",
                extra={"user_id": current_user.id, "role": current_user.role_name or None},
            )
            audit = AuditLog(
                user_id=current_user.id,
                action_type="UNAUTHORIZED_ACCESS",
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent", "unknown")[:255],
                context_entity=request.path[:120],
            )
            db.session.add(audit)
            db.session.commit()
            raise PermissionDenied("Your role does not allow this action")

        return wrapped

    return decorator


def record_audit(action_type: str, context_entity: str | None = None, user_id: str | None = None) -> AuditLog:
    """Stage an audit row for the current request; the caller's commit persists it."""
    audit = AuditLog(
        user_id=user_id or (current_user.id if current_user.is_authenticated else None),
        action_type=action_type,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent", "unknown")[:255],
        context_entity=context_entity,
    )
    db.session.add(audit)
    return audit
