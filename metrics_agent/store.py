"""
Document store backends and the idempotent snapshot upserter.

Each host has at most one stored document, found by its ``hostiduiid`` field.
A cycle either inserts that document or overwrites its fields in place.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from contextlib import contextmanager
from functools import partial
from pathlib import Path
from typing import Iterator, Optional

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json
from bson.errors import BSONError
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from metrics_agent.errors import StoreConnectFailed, StoreError, StoreOperationFailed
from metrics_agent.snapshot import HostMetricsSnapshot


HOST_ID_FIELD = 'hostiduiid'

DEFAULT_DATABASE = 'HTERRACOTA'
DEFAULT_COLLECTION = 'info_pc'
DEFAULT_CONNECT_TIMEOUT = 10

INSERTED = 'inserted'
UPDATED = 'updated'

_json_dumps = partial(json.dumps, default=str)


def normalize_host_id(host_id: str) -> str:
    """Strip embedded quote characters from a platform host identifier"""
    return host_id.replace('"', '').strip()


def to_document(snapshot: HostMetricsSnapshot) -> dict:
    """Render a snapshot with the field names used by stored host records"""
    return {
        'fechaupdate': snapshot.captured_at,
        'os': snapshot.operating_system,
        'totalmemory': snapshot.total_memory_bytes,
        'freememory': snapshot.free_memory_bytes,
        'percentageusedmemory': snapshot.used_memory_percent,
        'totaldiskspace': snapshot.total_disk_bytes,
        'useddiskspace': snapshot.used_disk_bytes,
        'freediskdpace': snapshot.free_disk_bytes,
        'percentagediskspaceusage': snapshot.used_disk_percent,
        'cpucores': str(snapshot.cpu_core_count),
        'hostname': snapshot.hostname,
        'uptime': snapshot.uptime_seconds,
        'numbersofprossesrunning': snapshot.process_count,
        'platform': snapshot.platform_name,
        HOST_ID_FIELD: normalize_host_id(snapshot.host_identifier),
        'cores': [
            {
                'cpuindexnumber': str(core.index),
                'vendorid': core.vendor_id,
                'family': core.family,
                'modelname': core.model_name,
                'speed': core.clock_mhz,
                'cpuusedpercentage': core.used_percent,
            }
            for core in snapshot.cpu_cores
        ],
        'interfaces': [
            {
                'interfacename': iface.name,
                'hardwaremacaddress': iface.mac_address,
                'flags': sorted(iface.flags),
                'ips': list(iface.ip_addresses),
            }
            for iface in snapshot.interfaces
        ],
        'infoprosses': [
            {
                'nombredeimagen': proc.image_name,
                'pid': proc.pid,
                'nombredesesin': proc.session_name,
                'nmdesesin': proc.session_number,
                'usodememoria': proc.memory_usage,
                'estado': proc.status,
                'nombredeusuario': proc.user_name,
                'tiempodecpu': proc.cpu_time,
                'ttulodeventana': proc.window_title,
            }
            for proc in snapshot.processes
        ],
    }


class StoreSession(ABC):
    """Operations available on an open store connection"""

    @abstractmethod
    def find_one(self, host_id: str) -> Optional[dict]:
        pass

    @abstractmethod
    def insert(self, document: dict) -> None:
        pass

    @abstractmethod
    def update(self, host_id: str, document: dict) -> None:
        """Overwrite every top-level field of the stored document"""
        pass


class DocumentStore(ABC):
    """A place snapshots are persisted to"""

    @abstractmethod
    def connect(self) -> Iterator[StoreSession]:
        """
        Context manager yielding an open session; the connection is released
        on exit whatever happened inside the block.

        Raises:
            StoreConnectFailed: If the connection cannot be opened
        """
        pass


class _MongoSession(StoreSession):

    def __init__(self, collection):
        self.collection = collection

    def find_one(self, host_id: str) -> Optional[dict]:
        try:
            return self.collection.find_one({HOST_ID_FIELD: host_id})
        except (PyMongoError, BSONError) as e:
            raise StoreOperationFailed(f"find failed: {e}") from e

    def insert(self, document: dict) -> None:
        try:
            # insert_one adds _id to the dict it is given
            self.collection.insert_one(dict(document))
        except (PyMongoError, BSONError) as e:
            raise StoreOperationFailed(f"insert failed: {e}") from e

    def update(self, host_id: str, document: dict) -> None:
        try:
            self.collection.update_one({HOST_ID_FIELD: host_id}, {'$set': document})
        except (PyMongoError, BSONError) as e:
            raise StoreOperationFailed(f"update failed: {e}") from e


class MongoStore(DocumentStore):
    """MongoDB collection, one document per host"""

    def __init__(
        self,
        url: str,
        database: str = DEFAULT_DATABASE,
        collection: str = DEFAULT_COLLECTION,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    ):
        self.url = url
        self.database = database
        self.collection = collection
        self.connect_timeout = connect_timeout

    @contextmanager
    def connect(self) -> Iterator[StoreSession]:
        timeout_ms = int(self.connect_timeout * 1000)
        client = None
        try:
            client = MongoClient(
                self.url,
                connectTimeoutMS=timeout_ms,
                serverSelectionTimeoutMS=timeout_ms
            )
            # MongoClient connects lazily; ping forces server selection now
            client.admin.command('ping')
        except PyMongoError as e:
            if client is not None:
                client.close()
            raise StoreConnectFailed(f"Could not connect to MongoDB: {e}") from e

        try:
            yield _MongoSession(client[self.database][self.collection])
        finally:
            client.close()


class _PostgresSession(StoreSession):

    def __init__(self, conn, table: str):
        self.conn = conn
        self.table = sql.Identifier(table)

    @contextmanager
    def _cursor(self, action: str):
        """Cursor inside a transaction that commits on success"""
        try:
            with self.conn.cursor() as cur:
                yield cur
            self.conn.commit()
        except psycopg2.Error as e:
            self.conn.rollback()
            raise StoreOperationFailed(f"{action} failed: {e}") from e

    def ensure_table(self) -> None:
        query = sql.SQL("""
            CREATE TABLE IF NOT EXISTS {} (
                hostiduiid TEXT PRIMARY KEY,
                document JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
        """).format(self.table)

        with self._cursor('create table') as cur:
            cur.execute(query)

    def find_one(self, host_id: str) -> Optional[dict]:
        query = sql.SQL("SELECT document FROM {} WHERE hostiduiid = %s LIMIT 1").format(self.table)

        with self._cursor('find') as cur:
            cur.execute(query, (host_id,))
            row = cur.fetchone()

        return row[0] if row else None

    def insert(self, document: dict) -> None:
        query = sql.SQL("INSERT INTO {} (hostiduiid, document) VALUES (%s, %s)").format(self.table)

        with self._cursor('insert') as cur:
            cur.execute(query, (document[HOST_ID_FIELD], Json(document, dumps=_json_dumps)))

    def update(self, host_id: str, document: dict) -> None:
        # jsonb || replaces top-level keys, arrays included
        query = sql.SQL("""
            UPDATE {}
            SET document = document || %s, updated_at = now()
            WHERE hostiduiid = %s
        """).format(self.table)

        with self._cursor('update') as cur:
            cur.execute(query, (Json(document, dumps=_json_dumps), host_id))


class PostgresStore(DocumentStore):
    """PostgreSQL table holding one JSONB document per host"""

    def __init__(
        self,
        url: str,
        collection: str = DEFAULT_COLLECTION,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    ):
        self.url = url
        self.collection = collection
        self.connect_timeout = connect_timeout

    @contextmanager
    def connect(self) -> Iterator[StoreSession]:
        try:
            conn = psycopg2.connect(self.url, connect_timeout=max(1, int(self.connect_timeout)))
        except psycopg2.Error as e:
            raise StoreConnectFailed(f"Could not connect to PostgreSQL: {e}") from e

        try:
            session = _PostgresSession(conn, self.collection)
            session.ensure_table()
            yield session
        finally:
            conn.close()


class _FileSession(StoreSession):

    def __init__(self, directory: Path):
        self.directory = directory

    def _path(self, host_id: str) -> Path:
        return self.directory / f"{re.sub(r'[^A-Za-z0-9._-]', '_', host_id)}.json"

    def _write(self, host_id: str, document: dict) -> None:
        path = self._path(host_id)
        tmp_path = path.with_suffix('.tmp')
        tmp_path.write_text(_json_dumps(document, indent=2))
        tmp_path.replace(path)

    def find_one(self, host_id: str) -> Optional[dict]:
        path = self._path(host_id)
        try:
            return json.loads(path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise StoreOperationFailed(f"find failed for {path}: {e}") from e

    def insert(self, document: dict) -> None:
        try:
            self._write(document[HOST_ID_FIELD], document)
        except OSError as e:
            raise StoreOperationFailed(f"insert failed: {e}") from e

    def update(self, host_id: str, document: dict) -> None:
        existing = self.find_one(host_id) or {}
        existing.update(json.loads(_json_dumps(document)))
        try:
            self._write(host_id, existing)
        except OSError as e:
            raise StoreOperationFailed(f"update failed: {e}") from e


class FileStore(DocumentStore):
    """
    JSON files, one per host, under ``<output_dir>/<collection>/``.

    Meant for hosts that cannot reach the database; the directory can be
    collected with rsync.
    """

    def __init__(self, output_dir: str, collection: str = DEFAULT_COLLECTION):
        self.directory = Path(output_dir) / collection

    @contextmanager
    def connect(self) -> Iterator[StoreSession]:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreConnectFailed(f"Could not open {self.directory}: {e}") from e
        yield _FileSession(self.directory)


def create_store(store_config) -> DocumentStore:
    """Build the backend named by ``store_config.backend``"""
    if store_config.backend == 'postgres':
        return PostgresStore(
            store_config.url,
            collection=store_config.collection,
            connect_timeout=store_config.connect_timeout
        )
    if store_config.backend == 'file':
        return FileStore(store_config.output_dir, collection=store_config.collection)
    return MongoStore(
        store_config.url,
        database=store_config.database,
        collection=store_config.collection,
        connect_timeout=store_config.connect_timeout
    )


class SnapshotUpserter:
    """Inserts or replaces the stored record for a snapshot's host"""

    def __init__(self, store: DocumentStore, logger: logging.Logger):
        self.store = store
        self.logger = logger

    def persist(self, snapshot: HostMetricsSnapshot) -> Optional[str]:
        """
        Upsert the snapshot.

        Returns:
            'inserted' or 'updated', or None if the store failed. Store errors
            are logged here and never raised.
        """
        host_id = normalize_host_id(snapshot.host_identifier)
        document = to_document(snapshot)

        try:
            if not host_id:
                raise StoreOperationFailed("Refusing to persist a snapshot without a host identifier")

            with self.store.connect() as session:
                if session.find_one(host_id) is None:
                    session.insert(document)
                    outcome = INSERTED
                else:
                    session.update(host_id, document)
                    outcome = UPDATED
        except StoreError as e:
            self.logger.error(
                f"Snapshot persistence failed: {e}",
                extra={'context': {'host_id': host_id, 'error_type': type(e).__name__}}
            )
            return None

        self.logger.info(
            f"Snapshot {outcome}",
            extra={'context': {'host_id': host_id, 'hostname': snapshot.hostname}}
        )
        return outcome
