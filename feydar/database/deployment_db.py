"""
Database operations for deployment records and push notification subscriptions
"""

import sqlite3
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from feydar.errors import PersistenceError
from feydar.models import DeploymentRecord

# Configure SQLite to handle datetime properly for Python 3.12+
sqlite3.register_adapter(datetime, lambda dt: dt.isoformat())
sqlite3.register_converter("timestamp", lambda b: datetime.fromisoformat(b.decode()))

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

RECORD_COLUMNS = tuple(f.name for f in fields(DeploymentRecord) if f.name != 'id')
BOOLEAN_COLUMNS = ('is_verified',)


@dataclass
class WriteOperation:
    """One staged write inside an atomic chunk"""
    kind: str  # 'create' or 'update'
    record: DeploymentRecord
    changes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, record: DeploymentRecord) -> 'WriteOperation':
        return cls('create', record)

    @classmethod
    def update(cls, record: DeploymentRecord, changes: Dict[str, Any]) -> 'WriteOperation':
        return cls('update', record, dict(changes))


class DeploymentDatabase:
    """Handles all database operations for the ingestion pipeline"""

    def __init__(self, db_path: str = 'deployments.db'):
        """Initialize database connection"""
        self.db_path = db_path
        self.logger = logging.getLogger(__name__)
        self._setup_database()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success, rolls back on error and always closes"""
        conn = sqlite3.connect(self.db_path, detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _setup_database(self):
        """Setup SQLite tables and indexes"""
        try:
            with self._connect() as conn:
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS deployments (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        token_address TEXT NOT NULL UNIQUE,
                        transaction_hash TEXT NOT NULL UNIQUE,
                        name TEXT NOT NULL,
                        symbol TEXT NOT NULL,
                        deployer_address TEXT NOT NULL,
                        deployer_alias_primary TEXT,
                        deployer_alias_secondary TEXT,
                        token_image_uri TEXT,
                        creator_fee_bps INTEGER,
                        staker_fee_bps INTEGER,
                        pool_identifier TEXT,
                        current_admin_address TEXT,
                        current_image_uri TEXT,
                        current_metadata TEXT,
                        current_context TEXT,
                        is_verified BOOLEAN,
                        block_number INTEGER NOT NULL,
                        created_at TIMESTAMP NOT NULL,
                        updated_at TIMESTAMP
                    )
                ''')

                conn.execute('''
                    CREATE TABLE IF NOT EXISTS notification_subscriptions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        fid INTEGER NOT NULL,
                        token TEXT NOT NULL,
                        url TEXT NOT NULL,
                        enabled BOOLEAN NOT NULL DEFAULT TRUE,
                        client_app_id TEXT,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP,
                        UNIQUE (fid, token)
                    )
                ''')

                conn.execute('CREATE INDEX IF NOT EXISTS idx_deployments_created_at ON deployments(created_at DESC)')
                conn.execute('CREATE INDEX IF NOT EXISTS idx_deployments_deployer ON deployments(deployer_address)')
                conn.execute('CREATE INDEX IF NOT EXISTS idx_deployments_block ON deployments(block_number DESC)')
                conn.execute('CREATE INDEX IF NOT EXISTS idx_subscriptions_enabled ON notification_subscriptions(enabled)')

                # Columns added after the first release
                for column, column_type in (('paired_token_address', 'TEXT'), ('total_supply', 'TEXT')):
                    try:
                        conn.execute(f'ALTER TABLE deployments ADD COLUMN {column} {column_type}')
                    except sqlite3.OperationalError:
                        pass  # Column already exists
        except sqlite3.Error as e:
            raise PersistenceError(f"Database setup failed: {e}") from e

        self.logger.debug(f"Database ready at {self.db_path}")

    @staticmethod
    def _row_to_record(row: Optional[sqlite3.Row]) -> Optional[DeploymentRecord]:
        if row is None:
            return None
        data = {column: row[column] for column in RECORD_COLUMNS}
        for column in BOOLEAN_COLUMNS:
            if data[column] is not None:
                data[column] = bool(data[column])
        created_at = data['created_at']
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        data['created_at'] = created_at
        return DeploymentRecord(id=row['id'], **data)

    def _fetch_one(self, query: str, params: Sequence[Any]) -> Optional[DeploymentRecord]:
        try:
            with self._connect() as conn:
                row = conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Query failed: {e}") from e
        return self._row_to_record(row)

    def find_by_transaction_hash(self, transaction_hash: str) -> Optional[DeploymentRecord]:
        return self._fetch_one('SELECT * FROM deployments WHERE transaction_hash = ?', (transaction_hash.lower(),))

    def find_by_token_address(self, token_address: str) -> Optional[DeploymentRecord]:
        return self._fetch_one('SELECT * FROM deployments WHERE token_address = ?', (token_address.lower(),))

    def find_many(self, deployer: Optional[str] = None, search: Optional[str] = None,
                  page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> Tuple[List[DeploymentRecord], int]:
        """Newest-first page of deployments plus the total matching count"""
        page = max(1, page)
        page_size = max(1, min(page_size, MAX_PAGE_SIZE))

        clauses = []
        params: List[Any] = []
        if deployer:
            clauses.append('deployer_address = ?')
            params.append(deployer.lower())
        if search:
            clauses.append('(name LIKE ? OR symbol LIKE ? OR token_address LIKE ?)')
            pattern = f"%{search}%"
            params.extend([pattern, pattern, pattern.lower()])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ''

        try:
            with self._connect() as conn:
                total = conn.execute(f'SELECT COUNT(*) FROM deployments {where}', params).fetchone()[0]
                rows = conn.execute(
                    f'SELECT * FROM deployments {where} ORDER BY block_number DESC, id DESC LIMIT ? OFFSET ?',
                    params + [page_size, (page - 1) * page_size]
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Query failed: {e}") from e
        return [self._row_to_record(row) for row in rows], total

    def count(self) -> int:
        try:
            with self._connect() as conn:
                return conn.execute('SELECT COUNT(*) FROM deployments').fetchone()[0]
        except sqlite3.Error as e:
            raise PersistenceError(f"Query failed: {e}") from e

    def get_latest_block_number(self) -> Optional[int]:
        """Highest block with a stored deployment, if any"""
        try:
            with self._connect() as conn:
                return conn.execute('SELECT MAX(block_number) FROM deployments').fetchone()[0]
        except sqlite3.Error as e:
            raise PersistenceError(f"Query failed: {e}") from e

    @staticmethod
    def _insert(conn: sqlite3.Connection, record: DeploymentRecord) -> int:
        values = record.values()
        placeholders = ', '.join('?' for _ in RECORD_COLUMNS)
        cursor = conn.execute(
            f"INSERT INTO deployments ({', '.join(RECORD_COLUMNS)}, updated_at) VALUES ({placeholders}, ?)",
            [values[column] for column in RECORD_COLUMNS] + [datetime.now(timezone.utc)]
        )
        return cursor.lastrowid

    @staticmethod
    def _update(conn: sqlite3.Connection, record_id: int, changes: Dict[str, Any]):
        unknown = set(changes) - set(RECORD_COLUMNS)
        if unknown:
            raise PersistenceError(f"Unknown deployment columns: {sorted(unknown)}")
        if not changes:
            return
        assignments = ', '.join(f'{column} = ?' for column in changes)
        conn.execute(
            f'UPDATE deployments SET {assignments}, updated_at = ? WHERE id = ?',
            list(changes.values()) + [datetime.now(timezone.utc), record_id]
        )

    def create_record(self, record: DeploymentRecord) -> DeploymentRecord:
        self.run_atomic([WriteOperation.create(record)])
        return record

    def update_record(self, record: DeploymentRecord, changes: Dict[str, Any]) -> DeploymentRecord:
        self.run_atomic([WriteOperation.update(record, changes)])
        return record

    def run_atomic(self, operations: List[WriteOperation]) -> None:
        """Apply every operation in one transaction; nothing is written if any fails"""
        if not operations:
            return
        try:
            with self._connect() as conn:
                for op in operations:
                    if op.kind == 'create':
                        op.record.id = self._insert(conn, op.record)
                    elif op.kind == 'update':
                        if op.record.id is None:
                            raise PersistenceError(f"Cannot update unsaved record {op.record.token_address}")
                        self._update(conn, op.record.id, op.changes)
                    else:
                        raise PersistenceError(f"Unknown operation kind: {op.kind}")
        except (sqlite3.Error, PersistenceError) as e:
            for op in operations:
                if op.kind == 'create':
                    op.record.id = None
            if isinstance(e, PersistenceError):
                raise
            raise PersistenceError(f"Atomic write of {len(operations)} operation(s) failed: {e}") from e

        # Only reflect updates on the in-memory records once committed
        for op in operations:
            if op.kind == 'update':
                for column, value in op.changes.items():
                    setattr(op.record, column, value)

    # Push notification subscriptions

    def add_subscription(self, fid: int, token: str, url: str, client_app_id: Optional[str] = None):
        try:
            with self._connect() as conn:
                conn.execute('''
                    INSERT INTO notification_subscriptions (fid, token, url, enabled, client_app_id, updated_at)
                    VALUES (?, ?, ?, TRUE, ?, ?)
                    ON CONFLICT(fid, token) DO UPDATE SET
                        url = excluded.url, enabled = TRUE, updated_at = excluded.updated_at
                ''', (fid, token, url, client_app_id, datetime.now(timezone.utc)))
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to save subscription for fid {fid}: {e}") from e

    def disable_subscription(self, fid: int, token: str):
        try:
            with self._connect() as conn:
                conn.execute(
                    'UPDATE notification_subscriptions SET enabled = FALSE, updated_at = ? WHERE fid = ? AND token = ?',
                    (datetime.now(timezone.utc), fid, token)
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to disable subscription for fid {fid}: {e}") from e

    def get_enabled_subscriptions(self) -> List[Dict[str, Any]]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    'SELECT fid, token, url, client_app_id FROM notification_subscriptions WHERE enabled = TRUE'
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to load subscriptions: {e}") from e
        return [dict(row) for row in rows]
