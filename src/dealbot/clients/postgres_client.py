"""
Postgres deal store for the dealbot pipeline.

Persists Deal records and reads storage provider records using SQLAlchemy 2.0
async engine + asyncpg with raw SQL. Writes are idempotent upserts keyed on
the deal id, so the orchestrator and the verification monitor can both save
the same record without coordinating.

Tables:
- deals (UPSERT on id)
- storage_providers (SELECT only; managed elsewhere)
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse
from uuid import UUID

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..errors import PersistenceError, wrap_persistence_error
from ..models.deal import Deal
from ..models.provider import StorageProvider

logger = structlog.get_logger(__name__)

# Column order of the deals upsert. id and created_at are never updated.
_DEAL_COLUMNS = (
    'id', 'sp_address', 'wallet_address', 'file_name', 'file_size',
    'piece_cid', 'data_set_id', 'piece_id', 'piece_size', 'status',
    'transaction_hash', 'metadata', 'service_types',
    'upload_start_time', 'upload_end_time', 'piece_added_time', 'deal_confirmed_time',
    'ingest_latency_ms', 'chain_latency_ms', 'deal_latency_ms', 'ingest_throughput_bps',
    'error_message', 'error_code', 'retry_count',
    'ipni_status', 'ipni_indexed_at', 'ipni_advertised_at', 'ipni_retrieved_at',
    'ipni_verified_at', 'ipni_time_to_index_ms', 'ipni_time_to_advertise_ms',
    'ipni_time_to_retrieve_ms', 'ipni_time_to_verify_ms',
    'ipni_verified_cids_count', 'ipni_unverified_cids_count',
    'created_at', 'updated_at',
)

_JSONB_COLUMNS = frozenset({'metadata', 'service_types'})
_IMMUTABLE_COLUMNS = frozenset({'id', 'created_at'})

_PROVIDER_COLUMNS = """
    address, "providerId" AS provider_id, name, description, payee,
    service_url, is_active, is_approved, region, metadata
"""


def _to_pg_uuid(val: UUID | str | None) -> str | None:
    """Convert UUID or string to plain string for Postgres, or None."""
    if val is None:
        return None
    return str(val)


def _to_pg_ts(val: datetime | str | None) -> datetime | None:
    """Ensure value is a datetime for asyncpg (which needs native types, not strings)."""
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    return datetime.fromisoformat(val)


def _sanitize_url(url: str) -> str:
    """Remove URL query params that asyncpg does not understand.

    Pooler URLs often include ``channel_binding=require`` and
    ``sslmode=require`` which are libpq parameters. asyncpg rejects unknown
    connection params; SSL is passed via ``connect_args`` instead.
    """
    _STRIP_PARAMS = {'channel_binding', 'sslmode'}
    parsed = urlparse(url)
    if not parsed.query:
        return url
    params = parse_qs(parsed.query)
    filtered = {k: v for k, v in params.items() if k not in _STRIP_PARAMS}
    new_query = urlencode(filtered, doseq=True)
    return urlunparse(parsed._replace(query=new_query))


def _normalize_driver(url: str) -> str:
    if url.startswith('postgres://'):
        return url.replace('postgres://', 'postgresql+asyncpg://', 1)
    if url.startswith('postgresql://') and '+asyncpg' not in url:
        return url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    return url


def _deal_params(deal: Deal) -> dict[str, Any]:
    """Bind parameters for the deals upsert."""
    record = deal.to_record()
    params: dict[str, Any] = {}
    for column in _DEAL_COLUMNS:
        value = record.get(column)
        if column in _JSONB_COLUMNS:
            value = json.dumps(value)
        elif column == 'id':
            value = _to_pg_uuid(value)
        elif column.endswith(('_time', '_at')):
            value = _to_pg_ts(value)
        params[column] = value
    return params


def _deal_upsert_sql() -> str:
    values = ', '.join(
        f'CAST(:{c} AS jsonb)' if c in _JSONB_COLUMNS else f':{c}' for c in _DEAL_COLUMNS
    )
    updates = ',\n                '.join(
        f'{c} = EXCLUDED.{c}' for c in _DEAL_COLUMNS if c not in _IMMUTABLE_COLUMNS
    )
    return f"""
            INSERT INTO deals ({', '.join(_DEAL_COLUMNS)})
            VALUES ({values})
            ON CONFLICT (id) DO UPDATE SET
                {updates}
        """


def _row_to_provider(row: Any) -> StorageProvider:
    data = dict(row)
    metadata = data.get('metadata')
    if isinstance(metadata, str):
        data['metadata'] = json.loads(metadata)
    elif metadata is None:
        data['metadata'] = {}
    return StorageProvider(**data)


class PostgresDealStore:
    """
    Async Postgres store for deals and storage provider lookups.

    Implements the DealStore protocol. Every driver error is re-raised as
    PersistenceError; callers decide whether a failed write is fatal (it
    never is inside the pipeline).
    """

    def __init__(self, database_url: str | None = None):
        """
        Args:
            database_url: Postgres connection URL. 'postgres://' and
                          'postgresql://' URLs are converted to use asyncpg.
        """
        self._engine: AsyncEngine | None = None
        self._database_url = database_url

    async def connect(self, database_url: str | None = None) -> None:
        """Create the async engine. Idempotent: no-op if already connected."""
        if self._engine is not None:
            return

        url = database_url or self._database_url
        if not url:
            raise ValueError('database_url is required')

        url = _normalize_driver(_sanitize_url(url))

        self._engine = create_async_engine(
            url,
            pool_size=5,
            max_overflow=5,
            pool_pre_ping=True,
            pool_timeout=30,
            # PgBouncer poolers don't support prepared statements
            connect_args={
                'prepared_statement_cache_size': 0,
                'ssl': 'require',
            },
        )
        logger.info('postgres_store.connected')

    async def close(self) -> None:
        """Dispose of the engine and connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info('postgres_store.closed')

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError('PostgresDealStore not connected; call connect() first')
        return self._engine

    async def verify_connectivity(self) -> bool:
        """Return True if we can execute a simple query."""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text('SELECT 1'))
            return True
        except Exception:
            logger.exception('postgres_store.connectivity_check_failed')
            return False

    # =========================================================================
    # Deals
    # =========================================================================

    async def create(self, **fields: Any) -> Deal:
        """
        Build a new Deal in memory.

        Nothing is written here; the orchestrator persists the deal once its
        outcome is known via save().
        """
        deal = Deal(**fields)
        logger.debug('postgres_store.deal_created', deal_id=str(deal.id), sp_address=deal.sp_address)
        return deal

    async def save(self, deal: Deal) -> None:
        """
        UPSERT a Deal into the deals table.

        Raises:
            PersistenceError: The write failed
        """
        params = _deal_params(deal)
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text(_deal_upsert_sql()), params)
        except PersistenceError:
            raise
        except Exception as exc:
            raise wrap_persistence_error(exc, {'deal_id': params['id']}) from exc

        logger.debug(
            'postgres_store.deal_saved',
            deal_id=params['id'],
            status=params['status'],
            ipni_status=params['ipni_status'],
        )

    # =========================================================================
    # Storage providers
    # =========================================================================

    async def find_provider(self, address: str) -> StorageProvider | None:
        """Look up one storage provider record by address."""
        sql = text(f'SELECT {_PROVIDER_COLUMNS} FROM storage_providers WHERE address = :address')
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(sql, {'address': address})
                row = result.mappings().first()
        except Exception as exc:
            raise wrap_persistence_error(exc, {'address': address}) from exc

        if row is None:
            logger.debug('postgres_store.provider_not_found', address=address)
            return None
        return _row_to_provider(row)

    async def list_providers(self, active_only: bool = True) -> list[StorageProvider]:
        """All storage provider records, optionally only active ones."""
        sql = f'SELECT {_PROVIDER_COLUMNS} FROM storage_providers'
        if active_only:
            sql += ' WHERE is_active = true'
        sql += ' ORDER BY address'

        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(text(sql))
                rows = result.mappings().all()
        except Exception as exc:
            raise wrap_persistence_error(exc, {'active_only': active_only}) from exc

        return [_row_to_provider(row) for row in rows]
