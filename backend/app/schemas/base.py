"""
Base schemas for CleanConnect requests and responses.

Amounts are Decimals end to end; they only become JSON numbers on the way out.
"""

from decimal import Decimal
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict
from pydantic_core import core_schema

from ..core.money import quantize_money, to_decimal


class StandardizedModel(BaseModel):
    """Base model for responses; reads ORM attributes and emits enum values."""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, from_attributes=True)


class StrictRequestModel(BaseModel):
    """Request DTO base that always forbids unexpected fields."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


def _validate_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("Expected a number")
    result = to_decimal(value)
    if not result.is_finite():
        raise ValueError("Expected a finite number")
    return result


def _decimal_schema(serialize: Callable[[Decimal], float]) -> core_schema.CoreSchema:
    return core_schema.no_info_after_validator_function(
        _validate_decimal,
        core_schema.union_schema(
            [
                core_schema.int_schema(),
                core_schema.float_schema(),
                core_schema.str_schema(),
                core_schema.is_instance_schema(Decimal),
            ]
        ),
        serialization=core_schema.plain_serializer_function_ser_schema(
            serialize,
            info_arg=False,
            return_schema=core_schema.float_schema(),
        ),
    )


class Money(Decimal):
    """Currency amount; serialized as a float rounded to cents."""

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> core_schema.CoreSchema:
        return _decimal_schema(lambda value: float(quantize_money(value)))


class Measure(Decimal):
    """Hours, percentages and coordinates; serialized as a float unrounded."""

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> core_schema.CoreSchema:
        return _decimal_schema(float)
