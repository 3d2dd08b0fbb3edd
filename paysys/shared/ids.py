from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if value is None:
        return None
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def same_account(left, right) -> bool:
    """Compare two account ids by value, whatever mix of str/ObjectId they come in."""
    left_id = to_object_id(left)
    return left_id is not None and left_id == to_object_id(right)
