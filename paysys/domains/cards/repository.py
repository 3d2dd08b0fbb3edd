import logging
from typing import Iterable, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from paysys.shared.errors import DefaultCardConflictError, DuplicateCardError
from paysys.shared.ids import to_object_id

logger = logging.getLogger(__name__)

DEFAULT_CARD_INDEX = "one_default_card_per_user"


def _translate_duplicate(exc: DuplicateKeyError):
    if DEFAULT_CARD_INDEX in str(exc):
        return DefaultCardConflictError()
    return DuplicateCardError()


class CardRepository:
    """MongoDB access for the ``saved_cards`` collection."""

    def __init__(self, collection):
        self.collection = collection

    async def insert(self, document: dict) -> dict:
        try:
            result = await self.collection.insert_one(document)
        except DuplicateKeyError as exc:
            raise _translate_duplicate(exc) from exc
        document["_id"] = result.inserted_id
        logger.info(f"Inserted saved card with ID: {result.inserted_id}")
        return document

    async def get(self, card_id) -> Optional[dict]:
        oid = to_object_id(card_id)
        if oid is None:
            return None
        return await self.collection.find_one({"_id": oid})

    async def find_by_token(self, user_id, card_token: str) -> Optional[dict]:
        return await self.collection.find_one({"user_id": user_id, "card_token": card_token})

    async def list_for_owner(self, user_id) -> list:
        cursor = self.collection.find({"user_id": user_id}).sort(
            [("is_default", DESCENDING), ("created_at", DESCENDING)]
        )
        return await cursor.to_list(length=None)

    async def clear_default(self, user_id, except_id=None) -> int:
        query = {"user_id": user_id, "is_default": True}
        if except_id is not None:
            query["_id"] = {"$ne": to_object_id(except_id)}
        result = await self.collection.update_many(query, {"$set": {"is_default": False}})
        return result.modified_count

    async def update(self, card_id, user_id, changes: dict) -> Optional[dict]:
        try:
            return await self.collection.find_one_and_update(
                {"_id": to_object_id(card_id), "user_id": user_id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as exc:
            raise _translate_duplicate(exc) from exc

    async def delete(self, card_id, user_id) -> int:
        result = await self.collection.delete_one({"_id": to_object_id(card_id), "user_id": user_id})
        return result.deleted_count

    async def delete_many(self, user_id, card_ids: Iterable) -> int:
        ids = [to_object_id(card_id) for card_id in card_ids]
        if not ids:
            return 0
        result = await self.collection.delete_many({"user_id": user_id, "_id": {"$in": ids}})
        return result.deleted_count
