from datetime import date, time
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator
from pydantic.alias_generators import to_camel

from ..utils.dates import parse_date, parse_optional_time, parse_time

class CamelModel(BaseModel):
    """Wire models use camelCase; snake_case is accepted on input too."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True

def _parse_optional_date(value):
    if value is None or value == "":
        return None
    return parse_date(value)

# Civil calendar types shared by request models
CivilDate = Annotated[date, BeforeValidator(parse_date)]
CivilTime = Annotated[time, BeforeValidator(parse_time)]
OptionalCivilDate = Annotated[Optional[date], BeforeValidator(_parse_optional_date)]
OptionalCivilTime = Annotated[Optional[time], BeforeValidator(parse_optional_time)]
