from datetime import date, datetime
from enum import Enum

from bson import ObjectId


def convert_objectid_to_str(doc):
    if isinstance(doc, list):
        return [convert_objectid_to_str(d) for d in doc]
    if isinstance(doc, dict):
        return {k: convert_objectid_to_str(v) for k, v in doc.items()}
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, (datetime, date)):
        return doc.isoformat()
    if isinstance(doc, Enum):
        return doc.value
    return doc


def serialize_document(doc: dict, hidden=()) -> dict:
    """Mongo document -> JSON-ready dict, ``_id`` renamed to ``id``."""
    if doc is None:
        return None
    result = {"id": str(doc["_id"])} if "_id" in doc else {}
    for key, value in doc.items():
        if key == "_id" or key in hidden:
            continue
        result[key] = convert_objectid_to_str(value)
    return result
