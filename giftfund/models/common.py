# giftfund/models/common.py

# Shared Pydantic building blocks for the MongoDB document models.

from typing import Annotated, Any

from bson import ObjectId
from pydantic import PlainSerializer, PlainValidator, WithJsonSchema


def _validate_object_id(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    raise ValueError(f"Invalid ObjectId: {value}")


# --- Custom Type for handling MongoDB ObjectId ---
# Accepts an ObjectId or its 24-char hex string, keeps ObjectId in Python
# (so documents are stored with real ObjectIds) and renders as a string in JSON.
PyObjectId = Annotated[
    ObjectId,
    PlainValidator(_validate_object_id),
    PlainSerializer(str, return_type=str, when_used="json"),
    WithJsonSchema({"type": "string", "example": "65f2a5b1b3727d9c4a7e1a0b"}),
]
