from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator, ValidationError

from message_relay.errors import ValidationErrors
from message_relay.utils import ensure_utc

UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


def validation_errors_from_pydantic(
    exc: ValidationError, prefix: Optional[str] = None
) -> ValidationErrors:
    """Flatten a pydantic ValidationError into a field -> messages multimap."""
    errors = ValidationErrors()
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "__root__"]
        field = ".".join(loc) if loc else "base"
        if prefix:
            field = f"{prefix}.{field}"
        ctx_error = (error.get("ctx") or {}).get("error")
        if error.get("type") == "value_error" and ctx_error is not None:
            message = str(ctx_error)
        else:
            message = error.get("msg", "is invalid")
        errors.add(field, message)
    return errors
