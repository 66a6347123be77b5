"""Unit tests for configuration loading."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from dualdb.infrastructure.config import Config, QueryConfig, StorageConfig


@pytest.mark.unit
class TestConfig:
    """Tests for Config."""

    def test_defaults(self) -> None:
        """Defaults are usable without any environment."""
        config = Config()
        assert config.storage.btree_max_keys == 32
        assert config.storage.auto_id_start == 1
        assert config.query.use_indexes is True
        assert config.query.max_pipeline_stages == 64
        assert config.observability.log_format == "json"

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Nested settings are read from DUALDB_<SECTION>__<FIELD>."""
        monkeypatch.setenv("DUALDB_STORAGE__BTREE_MAX_KEYS", "8")
        monkeypatch.setenv("DUALDB_QUERY__USE_INDEXES", "false")
        monkeypatch.setenv("DUALDB_OBSERVABILITY__LOG_LEVEL", "DEBUG")
        config = Config()
        assert config.storage.btree_max_keys == 8
        assert config.query.use_indexes is False
        assert config.observability.log_level == "DEBUG"

    def test_bounds_are_validated(self) -> None:
        """Out-of-range values are rejected."""
        with pytest.raises(ValidationError):
            StorageConfig(btree_max_keys=2)
        with pytest.raises(ValidationError):
            QueryConfig(lock_timeout_seconds=0)
        with pytest.raises(ValidationError):
            QueryConfig(max_pipeline_stages=0)
