"""Base schema classes with camelCase alias generation.

The companion desktop app and the central server speak camelCase; Python
code stays snake_case. ``populate_by_name`` lets upstream payloads that
already use snake_case (``ip_address``) validate too.
"""
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for request schemas. Accepts camelCase or snake_case, outputs camelCase."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


class CamelORMModel(BaseModel):
    """Base for response schemas. Reads from ORM rows or dataclasses."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }
