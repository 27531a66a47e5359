import logging
from functools import lru_cache
from typing import Optional, Dict, Any, List

from supabase import create_client, Client

from .config import get_settings

logger = logging.getLogger(__name__)

@lru_cache()
def get_supabase_client() -> Client:
    """Get the shared Supabase client instance."""
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_key:
        raise ValueError(
            "SUPABASE_URL and SUPABASE_KEY must be set in environment variables"
        )

    logger.info(f"Supabase URL: {settings.supabase_url}")
    return create_client(settings.supabase_url, settings.supabase_key)

# Helper functions for database operations
async def execute_query(
    table: str,
    query_type: str,
    data: Optional[Dict[str, Any]] = None,
    filters: Optional[Dict[str, Any]] = None,
    select: str = "*",
    limit: Optional[int] = None,
    order_by: Optional[Dict[str, str]] = None,
    or_filter: Optional[str] = None,
    client: Optional[Client] = None,
) -> List[Dict[str, Any]]:
    """
    Execute a query on the Supabase database.

    Args:
        table: The table to query
        query_type: The type of query (select, insert, update, delete)
        data: The data to insert or update
        filters: Equality filters to apply to the query. A list value
            becomes an ``in`` filter.
        select: The columns to select
        limit: The maximum number of rows to return
        order_by: The columns to order by, e.g. {"created_at": "desc"}
        or_filter: A PostgREST ``or`` expression
        client: Client to use instead of the shared one

    Returns:
        The rows returned by the query
    """
    logger.debug(f"Executing {query_type} on table {table} with filters {filters}")

    query = (client or get_supabase_client()).table(table)

    if query_type == "select":
        query = query.select(select)
    elif query_type == "insert":
        if not data:
            raise ValueError("Data is required for insert operations")
        query = query.insert(data)
    elif query_type == "update":
        if not data:
            raise ValueError("Data is required for update operations")
        if not filters:
            raise ValueError("Filters are required for update operations")
        query = query.update(data)
    elif query_type == "delete":
        if not filters:
            raise ValueError("Filters are required for delete operations")
        query = query.delete()
    else:
        raise ValueError(f"Invalid query type: {query_type}")

    for key, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set)):
            query = query.in_(key, list(value))
        else:
            query = query.eq(key, value)

    if or_filter:
        query = query.or_(or_filter)

    if query_type == "select":
        for key, direction in (order_by or {}).items():
            query = query.order(key, desc=direction.lower() == "desc")
        if limit:
            query = query.limit(limit)

    try:
        result = query.execute()
    except Exception as e:
        logger.error(f"Error executing {query_type} on table {table}: {e}")
        raise

    return result.data or []

async def execute_rpc(function: str, params: Dict[str, Any], client: Optional[Client] = None):
    """Call a Postgres function exposed through PostgREST."""
    try:
        result = (client or get_supabase_client()).rpc(function, params).execute()
    except Exception as e:
        logger.error(f"Error calling rpc {function}: {e}")
        raise
    return result.data
