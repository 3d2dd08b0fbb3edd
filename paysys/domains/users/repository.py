import logging
import re
from typing import Optional

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from paysys.shared.errors import ConflictError
from paysys.shared.ids import to_object_id

logger = logging.getLogger(__name__)

# Oldest sessions drop off once an account holds this many refresh tokens
MAX_REFRESH_TOKENS = 10


def _translate_duplicate(exc: DuplicateKeyError) -> ConflictError:
    if "document" in str(exc):
        return ConflictError("Document already registered", code="DOCUMENT_EXISTS")
    return ConflictError("Email already registered", code="EMAIL_EXISTS")


class UserRepository:
    """MongoDB access for the ``users`` collection."""

    def __init__(self, collection):
        self.collection = collection

    async def insert(self, document: dict) -> dict:
        try:
            result = await self.collection.insert_one(document)
        except DuplicateKeyError as exc:
            raise _translate_duplicate(exc) from exc
        document["_id"] = result.inserted_id
        logger.info(f"Inserted user with ID: {result.inserted_id}")
        return document

    async def get(self, user_id) -> Optional[dict]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return await self.collection.find_one({"_id": oid})

    async def find_by_email(self, email: str) -> Optional[dict]:
        return await self.collection.find_one({"email": email.lower()})

    async def find_by_document(self, document: str) -> Optional[dict]:
        return await self.collection.find_one({"document": document})

    async def update(self, user_id, changes: dict) -> Optional[dict]:
        try:
            return await self.collection.find_one_and_update(
                {"_id": to_object_id(user_id)},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as exc:
            raise _translate_duplicate(exc) from exc

    async def add_refresh_token(self, user_id, token_hash: str):
        await self.collection.update_one(
            {"_id": to_object_id(user_id)},
            {"$push": {"refresh_tokens": {"$each": [token_hash], "$slice": -MAX_REFRESH_TOKENS}}},
        )

    async def replace_refresh_token(self, user_id, old_hash: str, new_hash: str) -> bool:
        """Swap one stored refresh token for another; False if the old one is gone."""
        result = await self.collection.update_one(
            {"_id": to_object_id(user_id), "refresh_tokens": old_hash},
            {"$set": {"refresh_tokens.$": new_hash}},
        )
        return result.modified_count == 1

    async def remove_refresh_token(self, user_id, token_hash: str):
        await self.collection.update_one(
            {"_id": to_object_id(user_id)},
            {"$pull": {"refresh_tokens": token_hash}},
        )

    async def clear_refresh_tokens(self, user_id):
        await self.collection.update_one(
            {"_id": to_object_id(user_id)},
            {"$set": {"refresh_tokens": []}},
        )

    async def search_active(self, exclude_id, search: Optional[str], limit: int) -> list:
        query = {"is_active": True, "_id": {"$ne": to_object_id(exclude_id)}}
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"first_name": pattern}, {"last_name": pattern}, {"email": pattern}]
        cursor = self.collection.find(query).sort("first_name", ASCENDING).limit(limit)
        return await cursor.to_list(length=limit)
