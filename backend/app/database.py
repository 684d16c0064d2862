"""
Database connection - MongoDB async (Motor).
"""

from motor.motor_asyncio import AsyncIOMotorClient

from app.config import get_settings

settings = get_settings()

# Motor connects lazily on first operation
client = AsyncIOMotorClient(settings.mongo_url)
db = client[settings.db_name]
