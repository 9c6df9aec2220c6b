"""Neo4j driver and connection management.

This module provides the async driver lifecycle used by the application
lifespan, schema setup, and the translation of driver failures into
application errors.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from neo4j import AsyncDriver, AsyncGraphDatabase
from neo4j.exceptions import DriverError, Neo4jError, ServiceUnavailable, SessionExpired, TransientError

from second_brain.core.base import DatabaseErrorDetails
from second_brain.core.config import settings
from second_brain.core.errors import ProcessingError, StorageError
from second_brain.core.logging import get_logger
from second_brain.infrastructure.neo4j.queries import SchemaQueries

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


@asynccontextmanager
async def create_neo4j_driver(
    max_connection_pool_size: int | None = None,
    max_connection_lifetime: int | None = None,
) -> AsyncIterator[AsyncDriver]:
    """Create a Neo4j driver with proper resource management.

    It establishes a connection to Neo4j and ensures proper cleanup.

    Args:
        max_connection_pool_size: Maximum size of the connection pool
        max_connection_lifetime: Maximum lifetime of connections in seconds

    Yields:
        AsyncDriver: Connected Neo4j driver

    Raises:
        StorageError: If connection fails
    """
    pool_size = max_connection_pool_size or settings.neo4j_pool_size
    conn_lifetime = max_connection_lifetime or settings.neo4j_connection_lifetime

    logger.info(
        "Creating Neo4j driver",
        uri=settings.neo4j_uri,
        pool_size=pool_size,
        connection_lifetime=conn_lifetime,
    )

    driver = AsyncGraphDatabase.driver(
        settings.neo4j_uri,
        auth=(settings.neo4j_user, settings.neo4j_password.get_secret_value()),
        max_connection_pool_size=pool_size,
        max_connection_lifetime=conn_lifetime,
    )

    try:
        await driver.verify_connectivity()
    except (DriverError, Neo4jError) as e:
        await driver.close()
        raise StorageError(
            message=f"Could not connect to Neo4j: {e!s}",
            details=DatabaseErrorDetails(
                source="neo4j_driver",
                operation="verify_connectivity",
                service_name="Neo4j",
                endpoint=settings.neo4j_uri,
            ),
        ) from e
    logger.info("Neo4j connection established")

    try:
        yield driver
    finally:
        await driver.close()
        logger.info("Neo4j driver closed")


async def ensure_constraints(driver: AsyncDriver) -> None:
    """Create the uniqueness constraints and indexes the stores rely on."""
    async with driver.session() as session:
        for query in SchemaQueries.all():
            await session.run(query)
    logger.info("Neo4j schema constraints ensured")


def neo4j_errors(operation: str) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Translate driver exceptions raised by a repository method.

    Connectivity and transient database failures become ``StorageError`` and
    are retried by callers; anything else from the database is a
    ``ProcessingError``.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except (ServiceUnavailable, SessionExpired, TransientError) as e:
                raise StorageError(
                    message=f"Neo4j unavailable during {operation}: {e!s}",
                    details=DatabaseErrorDetails(
                        source="neo4j",
                        operation=operation,
                        service_name="Neo4j",
                    ),
                ) from e
            except Neo4jError as e:
                raise ProcessingError(
                    message=f"Neo4j rejected {operation}: {e!s}",
                    details={"source": "neo4j", "operation": operation},
                ) from e

        return wrapper

    return decorator


def node_properties(record: Any, key: str) -> dict[str, Any]:
    """Properties of the node bound to ``key`` in a result record."""
    return dict(record[key])
