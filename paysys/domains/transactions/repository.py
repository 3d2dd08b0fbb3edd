import logging
from datetime import datetime
from typing import Iterable, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from paysys.domains.transactions.models import ACTIVE_STATUSES, PaymentMethod, TransactionStatus
from paysys.shared.errors import DuplicateOrderError
from paysys.shared.ids import to_object_id

logger = logging.getLogger(__name__)

# Leaving the active set frees the order id for reuse
RELEASING_STATUSES = (TransactionStatus.DECLINED.value, TransactionStatus.FAILED.value)

EMPTY_STATS = {
    "total_transactions": 0,
    "total_amount": 0,
    "approved_count": 0,
    "approved_amount": 0,
    "declined_count": 0,
    "pending_count": 0,
    "processing_count": 0,
    "failed_count": 0,
    "credit_card_count": 0,
    "pix_count": 0,
}


def active_order_key(user_id, order_id: str) -> str:
    return f"{user_id}:{order_id}"


def _count_if(field: str, value: str) -> dict:
    return {"$sum": {"$cond": [{"$eq": [f"${field}", value]}, 1, 0]}}


class TransactionRepository:
    """MongoDB access for the ``transactions`` collection."""

    def __init__(self, collection):
        self.collection = collection

    async def create(self, document: dict) -> dict:
        if document["status"] in ACTIVE_STATUSES:
            document["active_order_key"] = active_order_key(document["user_id"], document["order_id"])
        try:
            result = await self.collection.insert_one(document)
        except DuplicateKeyError as exc:
            raise DuplicateOrderError() from exc
        document["_id"] = result.inserted_id
        logger.info(f"Inserted transaction with ID: {result.inserted_id}")
        return document

    async def get(self, transaction_id) -> Optional[dict]:
        oid = to_object_id(transaction_id)
        if oid is None:
            return None
        return await self.collection.find_one({"_id": oid})

    async def find_active_order(self, user_id, order_id: str) -> Optional[dict]:
        return await self.collection.find_one({
            "user_id": user_id,
            "order_id": order_id,
            "status": {"$in": list(ACTIVE_STATUSES)},
        })

    async def transition(self, transaction_id, expected_statuses: Iterable[str], changes: dict) -> Optional[dict]:
        """
        Apply ``changes`` only if the transaction is still in one of
        ``expected_statuses``. Returns the updated document, or None when
        another writer got there first.
        """
        update = {"$set": changes}
        if changes.get("status") in RELEASING_STATUSES:
            update["$unset"] = {"active_order_key": ""}
        return await self.collection.find_one_and_update(
            {"_id": to_object_id(transaction_id), "status": {"$in": list(expected_statuses)}},
            update,
            return_document=ReturnDocument.AFTER,
        )

    async def claim_pix(self, transaction_id, requested_at: datetime) -> Optional[dict]:
        return await self.collection.find_one_and_update(
            {
                "_id": to_object_id(transaction_id),
                "status": TransactionStatus.PENDING.value,
                "payment_method": PaymentMethod.PIX.value,
                "pix_requested_at": {"$exists": False},
            },
            {"$set": {"pix_requested_at": requested_at, "updated_at": requested_at}},
            return_document=ReturnDocument.AFTER,
        )

    async def search(self, user_id, status: Optional[str], payment_method: Optional[str],
                     sort_field: str, ascending: bool, skip: int, limit: int):
        query = {"user_id": user_id}
        if status:
            query["status"] = status
        if payment_method:
            query["payment_method"] = payment_method

        cursor = (
            self.collection.find(query)
            .sort(sort_field, ASCENDING if ascending else DESCENDING)
            .skip(skip)
            .limit(limit)
        )
        transactions = await cursor.to_list(length=limit)
        total = await self.collection.count_documents(query)
        return transactions, total

    async def recent(self, user_id, limit: int):
        cursor = self.collection.find({"user_id": user_id}).sort("created_at", DESCENDING).limit(limit)
        return await cursor.to_list(length=limit)

    async def stats(self, user_id, since: datetime) -> dict:
        pipeline = [
            {"$match": {"user_id": user_id, "created_at": {"$gte": since}}},
            {"$group": {
                "_id": None,
                "total_transactions": {"$sum": 1},
                "total_amount": {"$sum": "$amount"},
                "approved_count": _count_if("status", TransactionStatus.APPROVED.value),
                "approved_amount": {"$sum": {
                    "$cond": [{"$eq": ["$status", TransactionStatus.APPROVED.value]}, "$amount", 0]
                }},
                "declined_count": _count_if("status", TransactionStatus.DECLINED.value),
                "pending_count": _count_if("status", TransactionStatus.PENDING.value),
                "processing_count": _count_if("status", TransactionStatus.PROCESSING.value),
                "failed_count": _count_if("status", TransactionStatus.FAILED.value),
                "credit_card_count": _count_if("payment_method", PaymentMethod.CREDIT_CARD.value),
                "pix_count": _count_if("payment_method", PaymentMethod.PIX.value),
            }},
            {"$project": {"_id": 0}},
        ]
        result = await self.collection.aggregate(pipeline).to_list(None)
        return result[0] if result else dict(EMPTY_STATS)
