from datetime import datetime, timezone
from functools import wraps
from typing import Optional

from flask import current_app, g, jsonify, request
from marshmallow import Schema, ValidationError as SchemaValidationError

from storefront.exceptions import ForbiddenError, UnauthorizedError, ValidationError
from storefront.services import AuthService


def success_response(data, message: Optional[str] = None, status: int = 200):
    """Consistent success response envelope."""
    response = {
        "success": True,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if message:
        response["message"] = message
    return jsonify(response), status


def paginated(items, page: int, limit: int, total: int) -> dict:
    return {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit if limit else 0,
            "has_more": page * limit < total,
        },
    }


def parse_int(
    v,
    default=None,
    min_val: Optional[int] = None,
    max_val: Optional[int] = None,
    field_name: str = "value",
) -> Optional[int]:
    """Parse an integer query parameter with optional range validation."""
    if v is None or v == "":
        return default
    try:
        result = int(v)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field_name}: must be a valid integer")
    if min_val is not None and result < min_val:
        raise ValidationError(f"{field_name} must be at least {min_val}")
    if max_val is not None and result > max_val:
        raise ValidationError(f"{field_name} cannot exceed {max_val}")
    return result


def parse_bool(v, default: Optional[bool] = False) -> Optional[bool]:
    """Parse a boolean value from a query string."""
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).lower() in ("1", "true", "t", "yes", "y", "on")


def load_body(schema: Schema, partial: bool = False) -> dict:
    """Validate the JSON body against a marshmallow schema."""
    if not request.is_json:
        raise ValidationError("Content-Type must be application/json.")
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationError("Request body must be valid JSON.")
    try:
        return schema.load(payload, partial=partial)
    except SchemaValidationError as err:
        raise ValidationError("Validation failed", field_errors=err.messages)


def get_connector():
    return current_app.extensions["db_connector"]


def session_scope():
    """Transactional session: commits on success, rolls back on error."""
    return get_connector().session()


def get_tokens():
    return current_app.extensions["tokens"]


def get_metrics():
    return current_app.extensions["metrics"]


def _bearer_token() -> str:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        raise UnauthorizedError("Not authorized, no token or invalid format", "NO_TOKEN")
    return header.split(" ", 1)[1].strip()


def login_required(view):
    """Resolve the Bearer token to a user stored on g.current_user."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        token = _bearer_token()
        with session_scope() as session:
            g.current_user = AuthService(session, get_tokens()).user_from_token(token)
        return view(*args, **kwargs)

    return wrapper


def admin_required(view):
    @wraps(view)
    @login_required
    def wrapper(*args, **kwargs):
        if not g.current_user.is_admin:
            raise ForbiddenError("Not authorized as an admin")
        return view(*args, **kwargs)

    return wrapper
