"""
Shared building blocks for the API schemas.

The front end speaks camelCase JSON; Python code keeps snake_case field
names. ApiModel bridges the two with alias generation, and accepts either
spelling on input (populate_by_name) so tests and scripts can use whichever
reads better.

Money crosses the API as a JSON number with at most two fractional digits.
Inside the process it is a Decimal, never a float, and the ledger converts it
to integer cents before doing anything else.
"""

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

# Decimal in Python, plain number in JSON
Money = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]


class ApiModel(BaseModel):
    """Base for every response body."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class RequestModel(ApiModel):
    """Base for request bodies: one accepted shape, unknown fields are a 400."""

    model_config = ConfigDict(extra="forbid")
