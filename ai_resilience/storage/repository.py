"""
SQLite-backed prompt store and audit log.

These are the default implementations of the collaborators the operation
facade depends on. The request log is append-only; prompt rows are never
edited except for their active flag and usage statistics.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import structlog

from ai_resilience.core.templates import PromptTemplate
from .db import DEFAULT_DB_PATH, get_connection
from .models import AIRequestLog, PromptUsageStats

logger = structlog.get_logger(__name__)

_PROMPT_COLUMNS = """
    prompt_name, prompt_version, prompt_template, ai_model,
    max_tokens, temperature, is_active, description
"""

_LOG_COLUMNS = """
    timestamp, correlation_id, operation, model, success,
    processing_time_ms, tokens_used, cost, error, user_id, incident_id
"""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the prompt and request-log tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS ai_prompts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                prompt_name TEXT NOT NULL,
                prompt_version TEXT NOT NULL,
                prompt_template TEXT NOT NULL,
                ai_model TEXT,
                max_tokens INTEGER,
                temperature REAL,
                is_active INTEGER NOT NULL DEFAULT 1,
                description TEXT,
                created_at TEXT NOT NULL,
                usage_count INTEGER NOT NULL DEFAULT 0,
                success_count INTEGER NOT NULL DEFAULT 0,
                average_response_time REAL NOT NULL DEFAULT 0,
                UNIQUE (prompt_name, prompt_version)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS ai_request_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                correlation_id TEXT NOT NULL,
                operation TEXT NOT NULL,
                model TEXT NOT NULL,
                success INTEGER NOT NULL,
                processing_time_ms INTEGER NOT NULL,
                tokens_used INTEGER,
                cost REAL,
                error TEXT,
                user_id TEXT,
                incident_id TEXT
            )
        """)
        conn.commit()
    finally:
        conn.close()


def _row_to_prompt(row) -> PromptTemplate:
    return PromptTemplate(
        name=row[0],
        version=row[1],
        template=row[2],
        model=row[3],
        max_tokens=row[4],
        temperature=row[5],
        is_active=bool(row[6]),
        description=row[7]
    )


class SQLitePromptStore:
    """Versioned prompt templates with usage statistics."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def save_prompt(self, prompt: PromptTemplate, supersede: bool = True) -> None:
        """Insert a new prompt version.

        Args:
            prompt: Template to store; (name, version) must be new
            supersede: Deactivate other versions of the same prompt when the
                new one is active. Pass False to run versions side by side.

        Raises:
            sqlite3.IntegrityError: If the version already exists
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            if prompt.is_active and supersede:
                conn.execute(
                    "UPDATE ai_prompts SET is_active = 0 WHERE prompt_name = ?",
                    (prompt.name,)
                )
            conn.execute(f"""
                INSERT INTO ai_prompts ({_PROMPT_COLUMNS}, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                prompt.name,
                prompt.version,
                prompt.template,
                prompt.model,
                prompt.max_tokens,
                prompt.temperature,
                int(prompt.is_active),
                prompt.description,
                datetime.now().isoformat()
            ))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_active_prompt(self, name: str) -> Optional[PromptTemplate]:
        """Most recently created active version of ``name``, if any."""
        prompts = self.get_active_prompts(name)
        return prompts[0] if prompts else None

    def get_active_prompts(self, name: str) -> List[PromptTemplate]:
        """All active versions of ``name``, newest first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(f"""
                SELECT {_PROMPT_COLUMNS} FROM ai_prompts
                WHERE prompt_name = ? AND is_active = 1
                ORDER BY id DESC
            """, (name,))
            return [_row_to_prompt(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_prompt(self, name: str, version: str) -> Optional[PromptTemplate]:
        """A specific version of ``name``, active or not."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(f"""
                SELECT {_PROMPT_COLUMNS} FROM ai_prompts
                WHERE prompt_name = ? AND prompt_version = ?
            """, (name, version))
            row = cursor.fetchone()
            return _row_to_prompt(row) if row else None
        finally:
            conn.close()

    def list_prompts(self) -> List[PromptTemplate]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(f"""
                SELECT {_PROMPT_COLUMNS} FROM ai_prompts
                ORDER BY prompt_name, prompt_version
            """)
            return [_row_to_prompt(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def record_prompt_usage(
        self,
        name: str,
        version: str,
        response_time_ms: int,
        successful: bool
    ) -> bool:
        """Fold one invocation into the running statistics.

        Returns:
            False when the prompt version does not exist
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                UPDATE ai_prompts SET
                    average_response_time =
                        (average_response_time * usage_count + ?) / (usage_count + 1),
                    usage_count = usage_count + 1,
                    success_count = success_count + ?
                WHERE prompt_name = ? AND prompt_version = ?
            """, (response_time_ms, int(successful), name, version))
            conn.commit()
            if cursor.rowcount == 0:
                logger.warning("prompt_usage_unrecorded", prompt=name, version=version)
                return False
            return True
        finally:
            conn.close()

    def get_usage_stats(self, name: str, version: str) -> Optional[PromptUsageStats]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT usage_count, success_count, average_response_time
                FROM ai_prompts WHERE prompt_name = ? AND prompt_version = ?
            """, (name, version))
            row = cursor.fetchone()
            if row is None:
                return None
            return PromptUsageStats(
                usage_count=row[0],
                success_count=row[1],
                average_response_time=row[2]
            )
        finally:
            conn.close()


class SQLiteAuditLog:
    """Append-only log of AI operation invocations."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def log_ai_request(self, entry: AIRequestLog) -> None:
        """Append ``entry``. Timestamps are stored in UTC; naive ones are taken as local time."""
        conn = get_connection(self.db_path)
        try:
            conn.execute(f"""
                INSERT INTO ai_request_log ({_LOG_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                entry.timestamp.astimezone(timezone.utc).isoformat(),
                entry.correlation_id,
                entry.operation,
                entry.model,
                int(entry.success),
                entry.processing_time_ms,
                entry.tokens_used,
                entry.cost,
                entry.error,
                entry.user_id,
                entry.incident_id
            ))
            conn.commit()
        finally:
            conn.close()

    def fetch_recent(
        self,
        operation: Optional[str] = None,
        limit: int = 100
    ) -> List[AIRequestLog]:
        """Recent log entries, newest first, optionally for one operation."""
        conn = get_connection(self.db_path)
        try:
            query = f"SELECT {_LOG_COLUMNS} FROM ai_request_log"
            params: list = []
            if operation:
                query += " WHERE operation = ?"
                params.append(operation)
            query += " ORDER BY id DESC LIMIT ?"
            params.append(limit)

            cursor = conn.execute(query, params)
            return [
                AIRequestLog(
                    timestamp=datetime.fromisoformat(row[0]),
                    correlation_id=row[1],
                    operation=row[2],
                    model=row[3],
                    success=bool(row[4]),
                    processing_time_ms=row[5],
                    tokens_used=row[6],
                    cost=row[7],
                    error=row[8],
                    user_id=row[9],
                    incident_id=row[10]
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def get_usage_stats(
        self,
        operation: Optional[str] = None,
        days: int = 30
    ) -> Dict[str, float]:
        """Aggregate request, cost and token figures for the last ``days`` days."""
        conn = get_connection(self.db_path)
        try:
            cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
            query = """
                SELECT
                    COUNT(*),
                    SUM(success),
                    SUM(cost),
                    SUM(tokens_used),
                    AVG(processing_time_ms)
                FROM ai_request_log
                WHERE timestamp >= ?
            """
            params: list = [cutoff]
            if operation:
                query += " AND operation = ?"
                params.append(operation)

            row = conn.execute(query, params).fetchone()
            return {
                "total_requests": row[0] or 0,
                "successful_requests": row[1] or 0,
                "total_cost": float(row[2] or 0),
                "total_tokens": row[3] or 0,
                "avg_processing_time_ms": float(row[4] or 0)
            }
        finally:
            conn.close()
