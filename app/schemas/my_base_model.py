import logging
from typing import Any

from pydantic import BaseModel
from sqlalchemy.engine.row import Row

logger = logging.getLogger(__name__)


class CustomBaseModel(BaseModel):
    """Custom base model for all response schemas.
    - pre-process the data before init
    - set the default value if the value is invalid
    """

    def __init__(self, **data: Any) -> None:
        for attr, value in data.items():
            attr_type = None
            me = self.__class__
            while attr_type is None and me != CustomBaseModel:
                field = me.model_fields.get(attr)
                if field is not None:
                    attr_type = field.annotation
                elif me.__base__ is not None:
                    me = me.__base__
                else:
                    break

            # process simple type
            if attr_type in (int, str, bool) and value is not None:
                try:  # try to convert the value to the type of the attribute
                    data[attr] = attr_type(value)
                except (TypeError, ValueError):
                    field = me.model_fields[attr]
                    if field.is_required():
                        continue  # let validation report it
                    logger.warning("Invalid value for key: %s, using default", attr)
                    data[attr] = field.default
        super().__init__(**data)

    @classmethod
    def from_record(cls, record: Row[Any] | dict[str, Any]):
        if isinstance(record, Row):
            return cls(**record._asdict())
        elif isinstance(record, dict):
            return cls(**record)
        else:
            raise ValueError(f"Invalid record type: {type(record)}")
