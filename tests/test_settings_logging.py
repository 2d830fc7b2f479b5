import logging

from tasker.log import KeyValueFormatter, log_event
from tasker.settings import get_settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("PERSISTENCE_BACKEND", "STORAGE_BACKEND", "TASK_BACKEND", "TASK_MAX_WORKERS", "S3_BUCKET"):
            monkeypatch.delenv(name, raising=False)
        settings = get_settings()
        assert settings.persistence_backend == "memory"
        assert settings.storage_backend == "memory"
        assert settings.task_backend == "thread"
        assert settings.task_max_workers == 4
        assert settings.s3_bucket == "tasker-attachments"

    def test_env_overrides_and_invalid_values(self, monkeypatch):
        monkeypatch.setenv("PERSISTENCE_BACKEND", "SQLite")
        monkeypatch.setenv("STORAGE_BACKEND", "gcs")
        monkeypatch.setenv("TASK_MAX_WORKERS", "zero")
        monkeypatch.setenv("CORS_ALLOW_ORIGINS", "http://a.test, http://b.test")
        monkeypatch.setenv("AWS_ENDPOINT_URL", "  ")
        settings = get_settings()
        assert settings.persistence_backend == "sqlite"
        assert settings.storage_backend == "memory"
        assert settings.task_max_workers == 4
        assert settings.cors_allow_origins == ["http://a.test", "http://b.test"]
        assert settings.aws_endpoint_url is None


class TestLogging:
    def test_formatter_appends_extra_fields(self):
        record = logging.LogRecord("tasker.service", logging.INFO, __file__, 1, "Todo created", None, None)
        record.todo_id = "abc"
        record.event = "todo_created"
        line = KeyValueFormatter("%(levelname)s %(message)s").format(record)
        assert line == "INFO Todo created event=todo_created todo_id=abc"

    def test_log_event_attaches_fields(self, caplog):
        logger = logging.getLogger("tasker.test")
        with caplog.at_level(logging.INFO, logger="tasker.test"):
            log_event(logger, "todo_deleted", "Todo deleted successfully", todo_id=123, category_id=None)
        [record] = caplog.records
        assert record.event == "todo_deleted"
        assert record.todo_id == "123"
        assert record.category_id == ""
        assert record.getMessage() == "Todo deleted successfully"
