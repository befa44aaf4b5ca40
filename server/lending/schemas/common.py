"""Common Pydantic schemas and the success envelope."""

from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base schema: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Violation(BaseModel):
    """Validation error violation."""

    path: str = Field(..., description="JSON path to the invalid field")
    message: str = Field(..., description="Validation error message")


class Problem(BaseModel):
    """RFC 9457 Problem Details response with the success envelope fields."""

    success: bool = Field(False, description="Always false for errors")
    message: str = Field(..., description="Human-readable error message")
    type: Optional[str] = Field(None, description="Problem type URI")
    title: str = Field(..., description="Short human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: Optional[str] = Field(None, description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference for this occurrence")
    errors: Optional[List[str]] = Field(None, description="Per-item failures")
    violations: Optional[List[Violation]] = Field(None, description="Validation errors")


def envelope(data: Any, **extra: Any) -> dict:
    """Wrap a payload in the ``{success: true, data, ...}`` envelope.

    ``None``-valued extras are dropped so optional keys such as ``warnings``
    only appear when they carry something.
    """
    body = {"success": True, "data": data}
    body.update({key: value for key, value in extra.items() if value is not None})
    return body
