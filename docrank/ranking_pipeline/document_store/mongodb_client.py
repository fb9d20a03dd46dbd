"""
MongoDB connection management using the Motor async driver.
Creates connections and manages the connection lifecycle.
"""

import asyncio
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, PyMongoError

from docrank.config.settings import settings
from docrank.utils.logger import LoggerMixin
from .base import IDatabaseConnection, StoreConnectionError


class MongoDBConnection(IDatabaseConnection, LoggerMixin):
    """
    MongoDB connection manager using the Motor async driver.
    Read-heavy pool settings with health checks.
    """

    def __init__(
        self,
        connection_string: Optional[str] = None,
        database_name: Optional[str] = None,
        **kwargs
    ):
        """
        Initialize MongoDB connection.

        Args:
            connection_string: MongoDB connection URI
            database_name: Name of the database to use
            **kwargs: Additional Motor client options
        """
        self.connection_string = connection_string or settings.MONGODB_URL
        self.database_name = database_name or settings.DATABASE_NAME

        self.client_options = {
            "maxPoolSize": kwargs.pop("max_pool_size", 20),
            "minPoolSize": kwargs.pop("min_pool_size", 0),
            "serverSelectionTimeoutMS": kwargs.pop("server_selection_timeout_ms", 10000),
            "connectTimeoutMS": kwargs.pop("connect_timeout_ms", 10000),
            "socketTimeoutMS": kwargs.pop("socket_timeout_ms", 30000),
            "retryReads": True,
            **kwargs
        }

        self._client: Optional[AsyncIOMotorClient] = None
        self._database: Optional[AsyncIOMotorDatabase] = None
        self._is_connected = False

    async def connect(self) -> None:
        """
        Establish connection to MongoDB.

        Raises:
            StoreConnectionError: If connection fails
        """
        try:
            self.logger.info(f"Connecting to MongoDB: {self.database_name}")

            self._client = AsyncIOMotorClient(
                self.connection_string,
                **self.client_options
            )
            await self._client.admin.command('ping')
            self._database = self._client[self.database_name]

            self._is_connected = True
            self.logger.info("Successfully connected to MongoDB")

        except ConnectionFailure as e:
            self.logger.error(f"Failed to connect to MongoDB: {str(e)}")
            raise StoreConnectionError(f"MongoDB connection failed: {str(e)}") from e
        except PyMongoError as e:
            self.logger.error(f"Unexpected error connecting to MongoDB: {str(e)}")
            raise StoreConnectionError(f"Unexpected connection error: {str(e)}") from e

    async def disconnect(self) -> None:
        """Close MongoDB connection gracefully."""
        if self._client is not None:
            self.logger.info("Disconnecting from MongoDB")
            self._client.close()
            self._client = None
            self._database = None
            self._is_connected = False

    async def health_check(self) -> bool:
        """
        Check if MongoDB connection is healthy.

        Returns:
            True if connection is healthy, False otherwise
        """
        try:
            if self._client is None or not self._is_connected:
                return False

            await asyncio.wait_for(
                self._client.admin.command('ping'),
                timeout=2.0
            )
            return True

        except (PyMongoError, asyncio.TimeoutError) as e:
            self.logger.warning(f"MongoDB health check failed: {str(e)}")
            return False

    def get_client(self) -> AsyncIOMotorClient:
        """
        Get the Motor client instance.

        Raises:
            StoreConnectionError: If not connected
        """
        if self._client is None or not self._is_connected:
            raise StoreConnectionError("Not connected to MongoDB. Call connect() first.")
        return self._client

    def get_database(self) -> AsyncIOMotorDatabase:
        """
        Get the database instance.

        Raises:
            StoreConnectionError: If not connected
        """
        if self._database is None or not self._is_connected:
            raise StoreConnectionError("Not connected to MongoDB. Call connect() first.")
        return self._database

    def get_collection(self, collection_name: str):
        """Get a collection instance."""
        return self.get_database()[collection_name]

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()


# Global connection instance for dependency injection
_global_connection: Optional[MongoDBConnection] = None


async def get_mongodb_connection() -> MongoDBConnection:
    """
    Get the global MongoDB connection instance, connecting on first use.

    Returns:
        MongoDBConnection instance
    """
    global _global_connection

    if _global_connection is None:
        _global_connection = MongoDBConnection()
        await _global_connection.connect()
    elif not _global_connection.is_connected:
        await _global_connection.connect()

    return _global_connection


async def close_mongodb_connection() -> None:
    """Close the global MongoDB connection."""
    global _global_connection

    if _global_connection:
        await _global_connection.disconnect()
        _global_connection = None
