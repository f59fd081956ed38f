'''
Shared base for API models: camelCase on the wire, snake_case in Python.
'''
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

# Fee amounts stay Decimal in Python and go out as JSON numbers.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

class CamelModel(BaseModel):
    """
    Accepts either camelCase or snake_case on input and emits camelCase
    whenever dumped with by_alias=True (FastAPI responses do this by default).
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
