from typing import Dict, Optional, Union

from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base class for errors rendered as ``{"success": false, "error": {...}}``."""

    code = "INTERNAL_ERROR"

    def __init__(self, status_code: int, message: str, code: Optional[str] = None):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> Dict:
        return {"message": self.message, "code": self.code}


class ValidationError(AppError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Validation failed", fields: Optional[Dict[str, str]] = None):
        super().__init__(status.HTTP_422_UNPROCESSABLE_ENTITY, message)
        self.fields = fields or {}

    def to_dict(self) -> Dict:
        data = super().to_dict()
        if self.fields:
            data["fields"] = self.fields
        return data


class ResourceNotFoundError(AppError):
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Union[int, str, None] = None):
        if resource_id is None:
            message = f"{resource} not found"
        else:
            message = f"{resource} with id {resource_id} not found"
        super().__init__(status.HTTP_404_NOT_FOUND, message)
        self.resource = resource
        self.resource_id = resource_id



class ConflictError(AppError):
    code = "CONFLICT"

    def __init__(self, message: str):
        super().__init__(status.HTTP_409_CONFLICT, message)


class UserAlreadyExistsError(ConflictError):
    def __init__(self, email: str):
        super().__init__(f"User with email {email} already exists")


class UnauthorizedError(AppError):
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(status.HTTP_401_UNAUTHORIZED, message)


class InvalidCredentialsError(UnauthorizedError):
    def __init__(self):
        super().__init__("Invalid email or password")


class ForbiddenError(AppError):
    code = "FORBIDDEN"

    def __init__(self, message: str = "You do not have access to this resource"):
        super().__init__(status.HTTP_403_FORBIDDEN, message)


class DatabaseError(AppError):
    code = "DATABASE_ERROR"

    def __init__(self, message: str, db_code: Optional[str] = None, hint: Optional[str] = None):
        super().__init__(status.HTTP_500_INTERNAL_SERVER_ERROR, message)
        self.db_code = db_code
        self.hint = hint

    def to_dict(self) -> Dict:
        data = super().to_dict()
        if self.db_code:
            data["db_code"] = self.db_code
        if self.hint:
            data["hint"] = self.hint
        return data


class ServiceUnavailableError(AppError):
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(status.HTTP_503_SERVICE_UNAVAILABLE, message)


class PaymentGatewayError(AppError):
    code = "PAYMENT_GATEWAY_ERROR"

    def __init__(self, message: str):
        super().__init__(status.HTTP_502_BAD_GATEWAY, message)


_CONNECTIVITY_MARKERS = (
    "could not connect",
    "connection refused",
    "connection reset",
    "server closed the connection",
    "timeout expired",
    "network is unreachable",
    "name or service not known",
)


def wrap_db_error(exc: Exception, context: str) -> AppError:
    """Translate a SQLAlchemy/DBAPI error into an ``AppError`` with context.

    Connectivity problems become ``ServiceUnavailableError`` so callers can
    tell "database unreachable" apart from "query failed".
    """
    orig = getattr(exc, "orig", None)
    raw = str(orig if orig is not None else exc).strip()
    message = raw.splitlines()[0] if raw else exc.__class__.__name__
    lowered = message.lower()
    if getattr(exc, "connection_invalidated", False) or any(m in lowered for m in _CONNECTIVITY_MARKERS):
        return ServiceUnavailableError(f"{context}: database is unreachable")

    db_code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    hint = None
    diag = getattr(orig, "diag", None)
    if diag is not None:
        hint = getattr(diag, "message_hint", None)
    return DatabaseError(f"{context}: {message}", db_code=db_code, hint=hint)


_LOCATION_ROOTS = ("body", "query", "path", "header", "cookie")


def fields_from_errors(errors) -> Dict[str, str]:
    """Flatten pydantic error dicts into ``{"variants[0].color": message}``."""
    fields: Dict[str, str] = {}
    for error in errors:
        loc = list(error.get("loc", ()))
        if loc and loc[0] in _LOCATION_ROOTS:
            loc = loc[1:]
        key = ""
        for part in loc:
            if isinstance(part, int):
                key += f"[{part}]"
            else:
                key += f".{part}" if key else str(part)
        message = str(error.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        fields.setdefault(key or "body", message)
    return fields
