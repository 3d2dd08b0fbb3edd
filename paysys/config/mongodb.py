from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from paysys.config.setting import settings
import logging

logger = logging.getLogger(__name__)


class MongoDB:
    def __init__(self, uri: str, db_name: str):
        self.uri = uri
        self.client = None
        self.db = None
        self.db_name = db_name

    async def init_db(self):
        # Create connection to MongoDB using the connection string
        self.client = AsyncIOMotorClient(self.uri, tz_aware=True)
        self.db = self.client[self.db_name]
        logger.info(f"MongoDB client created for database '{self.db_name}'")

    async def ensure_indexes(self):
        transactions = self.db["transactions"]
        await transactions.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        await transactions.create_index([("user_id", ASCENDING), ("order_id", ASCENDING)])
        # Only active transactions carry active_order_key
        await transactions.create_index(
            "active_order_key",
            unique=True,
            partialFilterExpression={"active_order_key": {"$exists": True}},
        )

        cards = self.db["saved_cards"]
        await cards.create_index([("user_id", ASCENDING), ("card_token", ASCENDING)], unique=True)
        await cards.create_index(
            "user_id",
            name="one_default_card_per_user",
            unique=True,
            partialFilterExpression={"is_default": True},
        )

        users = self.db["users"]
        await users.create_index("email", unique=True)
        await users.create_index(
            "document",
            unique=True,
            partialFilterExpression={"document": {"$type": "string"}},
        )
        logger.info("MongoDB indexes ensured")

    def get_db(self):
        return self.db

    def close(self):
        if self.client is not None:
            self.client.close()


mongodb = MongoDB(uri=settings.mongo_uri, db_name=settings.mongo_db_name)
