from datetime import datetime, timezone
from typing import Any, Type, TypeVar
import uuid

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from magda.exceptions import ValidationError

M = TypeVar("M", bound=BaseModel)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


class CamelModel(BaseModel):
    """Base model that reads and writes the app's camelCase JSON shape."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_storage(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def validate_input(model: Type[M], data: Any) -> M:
    """Coerce *data* into *model*, mapping pydantic errors to ``ValidationError``."""
    if type(data) is model:
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {model.__name__}",
            errors=exc.errors(include_url=False, include_context=False),
        ) from exc
