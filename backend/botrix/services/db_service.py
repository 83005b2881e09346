# /botrix/services/db_service.py

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from botrix.config.settings import settings
from botrix.utils.metrics import database_operations_counter

logger = logging.getLogger(__name__)


class DatabaseService:
    """
    Owns the MongoDB client and every query against the `bot_flows` and
    `conversations` collections. Documents go in and out as plain dicts;
    services convert them to models.
    """

    def __init__(self, mongo_uri: str, db_name: str):
        self.mongo_uri = mongo_uri
        self.db_name = db_name
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    async def connect(self):
        try:
            self.client = AsyncIOMotorClient(
                self.mongo_uri,
                maxPoolSize=settings.max_pool_size,
                minPoolSize=settings.min_pool_size,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000
            )
            self.db = self.client[self.db_name]
            await self.create_indexes()
            database_operations_counter.labels(operation="connect", status="success").inc()
            logger.info(f"MongoDB client initialized for database '{self.db_name}'.")
        except Exception as e:
            database_operations_counter.labels(operation="connect", status="error").inc()
            logger.error(f"Error initializing MongoDB client: {e}")
            raise

    async def create_indexes(self) -> None:
        indexes = [
            ("bot_flows", [("bot_id", ASCENDING), ("version", DESCENDING)], {}),
            ("bot_flows", [("bot_id", ASCENDING), ("is_active", ASCENDING)], {}),
            ("conversations", [("bot_id", ASCENDING), ("session_id", ASCENDING)], {"unique": True}),
        ]
        for collection, keys, options in indexes:
            await self.db[collection].create_index(keys, **options)
        logger.info("MongoDB indexes ensured.")

    async def ping(self) -> bool:
        if self.db is None:
            return False
        await self.db.command("ping")
        return True

    def close(self):
        if self.client:
            self.client.close()
            self.client = None
            self.db = None
            logger.info("MongoDB client closed.")

    # ==================== Bot Flows ====================

    async def find_latest_flow(self, bot_id: str, active_only: bool = False) -> Optional[Dict[str, Any]]:
        """Highest version of a bot's flow, optionally among active versions only."""
        query: Dict[str, Any] = {"bot_id": bot_id}
        if active_only:
            query["is_active"] = True
        return await self.db.bot_flows.find_one(query, sort=[("version", DESCENDING)])

    async def insert_flow(self, document: Dict[str, Any]) -> str:
        result = await self.db.bot_flows.insert_one(document)
        database_operations_counter.labels(operation="insert_flow", status="success").inc()
        return str(result.inserted_id)

    async def set_flow_active(self, flow_id: str, bot_id: str, is_active: bool, updated_at: datetime) -> None:
        """
        Flip activation of one flow version. Every other version of the same
        bot is deactivated either way.
        """
        await self.db.bot_flows.update_many(
            {"bot_id": bot_id, "_id": {"$ne": ObjectId(flow_id)}, "is_active": True},
            {"$set": {"is_active": False, "updated_at": updated_at}}
        )
        await self.db.bot_flows.update_one(
            {"_id": ObjectId(flow_id)},
            {"$set": {"is_active": is_active, "updated_at": updated_at}}
        )
        database_operations_counter.labels(operation="set_flow_active", status="success").inc()

    async def delete_flows(self, bot_id: str) -> int:
        result = await self.db.bot_flows.delete_many({"bot_id": bot_id})
        database_operations_counter.labels(operation="delete_flows", status="success").inc()
        return result.deleted_count

    # ==================== Conversations ====================

    async def find_conversation(self, bot_id: str, session_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.conversations.find_one({"bot_id": bot_id, "session_id": session_id})

    async def save_conversation(self, document: Dict[str, Any]) -> None:
        """Insert or replace the conversation identified by (bot_id, session_id)."""
        await self.db.conversations.replace_one(
            {"bot_id": document["bot_id"], "session_id": document["session_id"]},
            document,
            upsert=True
        )
        database_operations_counter.labels(operation="save_conversation", status="success").inc()


# Globally accessible instance
db_service = DatabaseService(settings.mongo_uri, settings.mongo_db_name)
