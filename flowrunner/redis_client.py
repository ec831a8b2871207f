"""
Redis Client Configuration

Async Redis client with connection pooling for the Redis execution store.
"""

from typing import Optional

import redis.asyncio as redis

from flowrunner.logging_config import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    Async Redis client wrapper with connection pooling

    Usage:
        redis_client = RedisClient("redis://localhost:6379/0")
        await redis_client.connect()
        # Use redis_client.client for operations
        await redis_client.close()
    """

    def __init__(self, url: str, max_connections: int = 50):
        """
        Initialize Redis client with connection pool

        Args:
            url: Redis connection URL (redis://host:port/db)
            max_connections: Maximum connections in pool
        """
        self.url = url
        self.max_connections = max_connections
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """
        Establish connection to Redis server

        Raises:
            redis.ConnectionError: If connection fails
        """
        try:
            self.pool = redis.ConnectionPool.from_url(
                self.url,
                max_connections=self.max_connections,
                decode_responses=True,  # Auto-decode bytes to strings
                socket_timeout=5,
                socket_connect_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            self.client = redis.Redis(connection_pool=self.pool)

            await self.client.ping()

            logger.info("Redis connected", url=self.url.split("@")[-1])

        except redis.ConnectionError as e:
            logger.error("Failed to connect to Redis", error=str(e))
            raise

    async def close(self) -> None:
        """Close Redis connection and cleanup pool"""
        if self.client:
            try:
                await self.client.aclose()
                logger.info("Redis client closed")
            except redis.RedisError as e:
                logger.error("Error closing Redis client", error=str(e))

        if self.pool:
            try:
                await self.pool.disconnect()
            except redis.RedisError as e:
                logger.error("Error disconnecting Redis pool", error=str(e))

        self.client = None
        self.pool = None

    async def ping(self) -> bool:
        """
        Test Redis connection

        Returns:
            True if connection is alive, False otherwise
        """
        if not self.client:
            return False

        try:
            await self.client.ping()
            return True
        except redis.ConnectionError:
            return False

    def is_connected(self) -> bool:
        """Check if Redis client is initialized"""
        return self.client is not None
