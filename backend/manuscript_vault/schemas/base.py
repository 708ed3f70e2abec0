"""Base schema classes with camelCase alias generation.

API schemas inherit from these instead of BaseModel directly, so Python
stays snake_case while JSON is camelCase (fileSize, freedSize, ...).
"""
from typing import Annotated
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

# Sizes are always byte counts
ByteCount = Annotated[int, Field(ge=0)]


class CamelModel(BaseModel):
    """Base for request and computed response schemas. Accepts and outputs camelCase."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "protected_namespaces": (),
    }


class CamelORMModel(CamelModel):
    """Base for response schemas read straight from SQLAlchemy rows."""
    model_config = {**CamelModel.model_config, "from_attributes": True}
