"""
Unit tests for storage layer.

Tests schema creation, the prompt store, the audit log and prompt seeding.
"""

import os
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from ai_resilience.core.templates import PromptTemplate
from ai_resilience.storage.db import get_connection
from ai_resilience.storage.default_prompts import DEFAULT_PROMPTS, seed_default_prompts
from ai_resilience.storage.models import AIRequestLog, PromptUsageStats
from ai_resilience.storage.repository import SQLiteAuditLog, SQLitePromptStore, initialize_schema


class TestStorageSchema:
    """Test database schema creation."""

    def test_schema_creation(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
                )
                tables = [row[0] for row in cursor.fetchall()]
            finally:
                conn.close()

            assert "ai_prompts" in tables
            assert "ai_request_log" in tables

    def test_schema_creation_is_idempotent(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)


class TestPromptStore:
    """Test versioned prompt storage."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.store = SQLitePromptStore(self.db_path)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _prompt(self, version, **kwargs):
        return PromptTemplate(name="greet", version=version, template=f"Hello {{{{ name }}}} {version}", **kwargs)

    def test_save_and_get_active(self):
        self.store.save_prompt(self._prompt("v1", model="openai/gpt-4o", max_tokens=10, temperature=0.1))

        prompt = self.store.get_active_prompt("greet")

        assert prompt.version == "v1"
        assert prompt.template == "Hello {{ name }} v1"
        assert prompt.model == "openai/gpt-4o"
        assert prompt.max_tokens == 10
        assert prompt.temperature == 0.1
        assert prompt.is_active is True

    def test_missing_prompt(self):
        assert self.store.get_active_prompt("nope") is None
        assert self.store.get_prompt("nope", "v1") is None

    def test_new_version_supersedes_old(self):
        self.store.save_prompt(self._prompt("v1"))
        self.store.save_prompt(self._prompt("v2"))

        assert self.store.get_active_prompt("greet").version == "v2"
        assert self.store.get_prompt("greet", "v1").is_active is False

    def test_side_by_side_versions(self):
        self.store.save_prompt(self._prompt("v1"))
        self.store.save_prompt(self._prompt("v2"), supersede=False)

        active = self.store.get_active_prompts("greet")

        assert [p.version for p in active] == ["v2", "v1"]

    def test_inactive_version_does_not_deactivate_others(self):
        self.store.save_prompt(self._prompt("v1"))
        self.store.save_prompt(self._prompt("v2", is_active=False))

        assert self.store.get_active_prompt("greet").version == "v1"

    def test_duplicate_version_rejected_and_rolled_back(self):
        self.store.save_prompt(self._prompt("v1"))

        with pytest.raises(sqlite3.IntegrityError):
            self.store.save_prompt(self._prompt("v1"))

        assert self.store.get_active_prompt("greet").version == "v1"

    def test_list_prompts(self):
        self.store.save_prompt(self._prompt("v2"))
        self.store.save_prompt(self._prompt("v1"), supersede=False)

        assert [p.version for p in self.store.list_prompts()] == ["v1", "v2"]

    def test_usage_statistics(self):
        self.store.save_prompt(self._prompt("v1"))

        assert self.store.record_prompt_usage("greet", "v1", 100, True) is True
        assert self.store.record_prompt_usage("greet", "v1", 300, False) is True

        stats = self.store.get_usage_stats("greet", "v1")
        assert stats.usage_count == 2
        assert stats.success_count == 1
        assert stats.average_response_time == pytest.approx(200.0)
        assert stats.success_rate == pytest.approx(0.5)

    def test_usage_for_missing_prompt(self):
        assert self.store.record_prompt_usage("greet", "v9", 100, True) is False
        assert self.store.get_usage_stats("greet", "v9") is None

    def test_unused_prompt_success_rate(self):
        assert PromptUsageStats(0, 0, 0.0).success_rate == 1.0


class TestAuditLog:
    """Test the append-only request log."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.audit_log = SQLiteAuditLog(self.db_path)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _entry(self, operation="op", success=True, cost=0.01, tokens=100, timestamp=None):
        return AIRequestLog(
            timestamp=timestamp or datetime.now(timezone.utc),
            correlation_id="ai-1-abc",
            operation=operation,
            model="openai/gpt-4o",
            success=success,
            processing_time_ms=200,
            tokens_used=tokens,
            cost=cost,
            error=None if success else "boom",
            user_id="u1",
            incident_id="inc-1"
        )

    def test_log_and_fetch(self):
        self.audit_log.log_ai_request(self._entry())
        self.audit_log.log_ai_request(self._entry(operation="other", success=False))

        entries = self.audit_log.fetch_recent()

        assert len(entries) == 2
        assert entries[0].operation == "other"
        assert entries[0].success is False
        assert entries[0].error == "boom"
        assert entries[1].incident_id == "inc-1"

    def test_fetch_filtered_by_operation(self):
        self.audit_log.log_ai_request(self._entry(operation="a"))
        self.audit_log.log_ai_request(self._entry(operation="b"))

        entries = self.audit_log.fetch_recent(operation="a")

        assert [e.operation for e in entries] == ["a"]

    def test_null_metrics_roundtrip(self):
        self.audit_log.log_ai_request(self._entry(cost=None, tokens=None))

        entry = self.audit_log.fetch_recent()[0]

        assert entry.cost is None
        assert entry.tokens_used is None

    def test_usage_stats(self):
        self.audit_log.log_ai_request(self._entry(cost=0.02, tokens=100))
        self.audit_log.log_ai_request(self._entry(success=False, cost=None, tokens=None))
        self.audit_log.log_ai_request(self._entry(
            cost=5.0, tokens=999, timestamp=datetime.now(timezone.utc) - timedelta(days=40)
        ))

        stats = self.audit_log.get_usage_stats(days=30)

        assert stats["total_requests"] == 2
        assert stats["successful_requests"] == 1
        assert stats["total_cost"] == pytest.approx(0.02)
        assert stats["total_tokens"] == 100
        assert stats["avg_processing_time_ms"] == pytest.approx(200.0)

    def test_timestamps_stored_in_utc(self):
        local = datetime(2025, 3, 1, 10, 0, 0)
        self.audit_log.log_ai_request(self._entry(timestamp=local))

        stored = self.audit_log.fetch_recent()[0].timestamp

        assert stored.utcoffset() == timedelta(0)
        assert stored == local.astimezone(timezone.utc)

    def test_usage_window_includes_naive_local_timestamps(self):
        self.audit_log.log_ai_request(self._entry(timestamp=datetime.now() - timedelta(hours=1)))

        assert self.audit_log.get_usage_stats(days=1)["total_requests"] == 1

    def test_usage_stats_empty(self):
        stats = self.audit_log.get_usage_stats(operation="missing")

        assert stats["total_requests"] == 0
        assert stats["total_cost"] == 0.0


class TestDefaultPrompts:
    """Test seeding the default operation prompts."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.store = SQLitePromptStore(self.db_path)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_seed_inserts_all_defaults(self):
        inserted = seed_default_prompts(self.store)

        assert sorted(inserted) == sorted(p.name for p in DEFAULT_PROMPTS)
        for prompt in DEFAULT_PROMPTS:
            assert self.store.get_active_prompt(prompt.name).version == "v1.0.0"

    def test_seed_is_idempotent(self):
        seed_default_prompts(self.store)

        assert seed_default_prompts(self.store) == []

    def test_seed_keeps_existing_active_version(self):
        name = DEFAULT_PROMPTS[0].name
        self.store.save_prompt(PromptTemplate(name=name, version="v2.0.0", template="custom"))

        inserted = seed_default_prompts(self.store)

        assert name not in inserted
        assert self.store.get_active_prompt(name).template == "custom"
