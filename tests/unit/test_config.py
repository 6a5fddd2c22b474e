"""Test settings loading from grammar files, overrides and env vars."""

import pytest

from chunk_ledger.context import LedgerContext
from chunk_ledger.core.config import LedgerSettings, load_settings, params_to_dict
from chunk_ledger.core.errors import ConfigError
from chunk_ledger.core.params import ParameterMap


class TestDefaults:
    def test_default_settings(self):
        settings = LedgerSettings()
        assert settings.chunk.capacity == 100
        assert settings.chunk.digest_algorithm == "sha256"
        assert settings.bus.halt_timeout == 5.0
        assert settings.manifest_path.name == "manifest.params"


class TestLoadSettings:
    def test_load_from_file(self, tmp_path):
        path = tmp_path / "ledger.params"
        path.write_text(
            "data_dir=/var/ledger;\n"
            "chunk={capacity=250;digest_algorithm=blake2b;};\n"
            "observability={log_level=DEBUG;log_format=console;};\n"
        )
        settings = load_settings(path)
        assert settings.data_dir == "/var/ledger"
        assert settings.chunk.capacity == 250
        assert settings.chunk.digest_algorithm == "blake2b"
        assert settings.observability.log_format == "console"

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_settings(tmp_path / "absent.params").chunk.capacity == 100

    def test_overrides(self):
        settings = load_settings(overrides={"chunk": {"capacity": 7}})
        assert settings.chunk.capacity == 7

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("LEDGER_CHUNK__CAPACITY", "12")
        assert load_settings().chunk.capacity == 12

    def test_invalid_capacity(self):
        with pytest.raises(ConfigError, match="capacity"):
            load_settings(overrides={"chunk": {"capacity": 0}})

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "bad.params"
        path.write_text("chunk={capacity=3;")
        with pytest.raises(ConfigError, match="Malformed"):
            load_settings(path)

    def test_params_to_dict_lists(self):
        params = ParameterMap.decode("tags={a,b};nested={x=1;};plain=v;")
        assert params_to_dict(params) == {
            "tags": ["a", "b"],
            "nested": {"x": "1"},
            "plain": "v",
        }


class TestContext:
    def test_unknown_digest_algorithm(self):
        settings = LedgerSettings(chunk={"digest_algorithm": "md4"})
        with pytest.raises(ConfigError):
            LedgerContext(settings)

    def test_context_manager_halts_bus(self, settings):
        with LedgerContext(settings) as ctx:
            assert ctx.bus.running
        assert ctx.bus.halted

    def test_from_config(self, tmp_path):
        path = tmp_path / "ledger.params"
        path.write_text("chunk={capacity=9;};")
        ctx = LedgerContext.from_config(path)
        assert ctx.settings.chunk.capacity == 9
        ctx.close()
