"""
Async column enrichment.

Parsing produces tables with empty column lists. This separate phase asks a
catalog service for each table's columns so the canvas can show them and
the generator can check join types.
"""

import asyncio
import logging
import httpx
from abc import ABC, abstractmethod
from pydantic import BaseModel
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from .model_types import Column, QueryModel, TableReference

logger = logging.getLogger(__name__)

TABLE_NOT_FOUND_COLUMN = "(table not found)"
TABLE_NOT_FOUND_TYPE = "ERROR"


class CatalogError(Exception):
    """The catalog service could not answer a column request."""
    pass


class ColumnCatalog(ABC):
    """Source of column metadata for (catalog, schema, table)."""

    @abstractmethod
    async def fetch_columns(self, catalog: str, schema: str, table: str) -> Optional[List[Column]]:
        """Columns of the table, or None when the table does not exist."""
        ...


class HttpColumnCatalog(ColumnCatalog):
    """
    Catalog service client.

    GET {base_url}/api/catalogs/{catalog}/schemas/{schema}/tables/{table}/columns
    returns a JSON list of columns (or an object with a `columns` list).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.headers = headers or {}
        self._client = client

    def columns_url(self, catalog: str, schema: str, table: str) -> str:
        return (
            f"{self.base_url}/api/catalogs/{quote(catalog, safe='')}"
            f"/schemas/{quote(schema, safe='')}/tables/{quote(table, safe='')}/columns"
        )

    async def fetch_columns(self, catalog: str, schema: str, table: str) -> Optional[List[Column]]:
        url = self.columns_url(catalog, schema, table)
        try:
            if self._client is not None:
                response = await self._client.get(url, headers=self.headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, headers=self.headers, timeout=self.timeout)
        except httpx.TimeoutException:
            raise CatalogError(f"Timeout calling catalog service for {catalog}.{schema}.{table}")
        except httpx.RequestError as e:
            raise CatalogError(f"Failed to connect to catalog service: {e}")

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise CatalogError(f"Catalog service returned HTTP {response.status_code}")

        data = response.json()
        if isinstance(data, dict):
            data = data.get("columns", [])
        return [Column.model_validate(item) for item in data]


class EnrichmentResult(BaseModel):
    model: QueryModel
    warnings: List[str] = []


async def _fetch_table_columns(
    catalog: ColumnCatalog, table: TableReference, timeout: float
) -> Tuple[Optional[List[Column]], Optional[str]]:
    """(columns, None) on an answer from the catalog, (None, warning) on timeout or error."""
    try:
        columns = await asyncio.wait_for(
            catalog.fetch_columns(table.catalog, table.schema_, table.name), timeout
        )
        return columns, None
    except asyncio.TimeoutError:
        return None, f"Timed out after {timeout}s fetching columns for {table.qualified_name}"
    except Exception as e:
        logger.warning(f"[Enrichment] Column fetch failed for {table.qualified_name}: {e}")
        return None, f"Could not fetch columns for {table.qualified_name}: {e}"


async def enrich_query_model(model: QueryModel, catalog: ColumnCatalog, timeout: float = 10.0) -> EnrichmentResult:
    """
    Fill in columns for every table whose column list is empty.

    Requests run concurrently, each bounded by `timeout`. Timeouts and
    catalog errors become warnings and leave the table's columns empty;
    a table the catalog does not know gets a single placeholder column.
    The input model is not modified.
    """
    enriched = model.model_copy(deep=True)
    pending = [table for table in enriched.tables if not table.columns]
    if not pending:
        return EnrichmentResult(model=enriched)

    results = await asyncio.gather(*(_fetch_table_columns(catalog, t, timeout) for t in pending))

    warnings: List[str] = []
    found = 0
    for table, (columns, warning) in zip(pending, results):
        if warning:
            warnings.append(warning)
        elif columns is None:
            table.columns = [Column(name=TABLE_NOT_FOUND_COLUMN, data_type=TABLE_NOT_FOUND_TYPE)]
            warnings.append(f"Table {table.qualified_name} not found in catalog")
        else:
            table.columns = list(columns)
            found += 1

    logger.info(f"[Enrichment] Enriched {found}/{len(pending)} tables")
    return EnrichmentResult(model=enriched, warnings=warnings)
