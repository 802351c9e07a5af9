"""Shared pydantic building blocks for wire and storage models."""

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

# Money is kept as Decimal in memory and in DynamoDB, and written as a JSON number
Price = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used='json')]


class CamelModel(BaseModel):
    """Immutable model whose wire form uses camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)
