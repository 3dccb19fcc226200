"""Shared pydantic building blocks for API schemas"""
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

from edufund.core.money import parse_minor_units, parse_rate

# Minor-unit amount: decimal string on the wire, int in Python
MinorUnitStr = Annotated[
    int,
    BeforeValidator(parse_minor_units),
    PlainSerializer(lambda v: str(v), return_type=str, when_used="json"),
]

# Interest rate fraction: decimal string on the wire, Decimal in Python
RateStr = Annotated[
    Decimal,
    BeforeValidator(parse_rate),
    PlainSerializer(lambda v: str(v), return_type=str, when_used="json"),
]


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class OkResponse(CamelModel):
    ok: bool = True
