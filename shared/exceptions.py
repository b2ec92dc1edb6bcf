"""
shared/exceptions.py
Domain exceptions raised by services and rendered by the handlers in main.py
or directly by routers.
"""

from typing import List, Tuple

from pydantic import ValidationError


FieldError = Tuple[str, str]  # (attribute, message)


class RecordInvalid(Exception):
    """One or more attribute validations failed. Carries (field, message) pairs."""

    def __init__(self, errors: List[FieldError]):
        self.errors = errors
        super().__init__("; ".join(f"{field} {message}" for field, message in errors))

    @classmethod
    def single(cls, field: str, message: str) -> "RecordInvalid":
        return cls([(field, message)])

    @classmethod
    def from_validation_error(cls, exc: ValidationError) -> "RecordInvalid":
        """Collapse a Pydantic error list to top-level attribute names."""
        errors: List[FieldError] = []
        for err in exc.errors():
            field = str(err["loc"][0]) if err["loc"] else "base"
            ctx = err.get("ctx") or {}
            if err["type"] == "missing" or (
                err["type"] == "string_too_short" and ctx.get("min_length") == 1
            ):
                message = "can't be blank"
            elif err["type"] == "value_error" and "error" in ctx:
                message = str(ctx["error"])
            else:
                message = err["msg"]
            errors.append((field, message))
        return cls(errors)


class CascadeDiscardError(Exception):
    """A cascading soft delete failed part-way; the transaction has been rolled back."""

    def __init__(self, resource: str, resource_id: int):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"Could not discard {resource} {resource_id}")
