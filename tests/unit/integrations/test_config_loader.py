"""
诊断配置加载单元测试
"""
import pytest

from netcheck.integrations.config_loader import (
    CONFIG_ENV_VAR,
    ConfigError,
    DiagnosticConfig,
    MetricThreshold,
    build_config,
    default_config_path,
    load_config,
)


class TestLoadConfig:
    """配置文件加载测试"""

    def test_bundled_config_matches_defaults(self, monkeypatch):
        """测试随项目发布的配置文件与内置默认值一致"""
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

        assert default_config_path().exists()
        assert load_config() == DiagnosticConfig()

    def test_partial_file_overrides_only_named_keys(self, tmp_path):
        """测试部分配置只覆盖出现的键"""
        path = tmp_path / "netcheck.yaml"
        path.write_text("timeouts:\n  dns: 2\nstability:\n  samples: 5\n", encoding="utf-8")

        config = load_config(str(path))

        assert config.timeouts.dns == 2
        assert config.timeouts.tcp == 30
        assert config.stability.samples == 5
        assert config.stability.interval_ms == 100
        assert config.thresholds.ttfb == MetricThreshold(500, 1000)

    def test_env_var_path(self, tmp_path, monkeypatch):
        """测试通过环境变量指定配置文件"""
        path = tmp_path / "custom.yaml"
        path.write_text("output_dir: /tmp/netcheck-runs\n", encoding="utf-8")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert load_config().output_dir == "/tmp/netcheck-runs"

    def test_env_placeholder(self, tmp_path, monkeypatch):
        """测试 ${VAR} 占位符"""
        path = tmp_path / "netcheck.yaml"
        path.write_text("output_dir: ${NETCHECK_TEST_OUTPUT}\n", encoding="utf-8")
        monkeypatch.setenv("NETCHECK_TEST_OUTPUT", "/data/runs")

        assert load_config(str(path)).output_dir == "/data/runs"

    def test_missing_explicit_path(self, tmp_path):
        """测试显式指定的文件不存在"""
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_empty_file(self, tmp_path):
        """测试空文件使用默认值"""
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        assert load_config(str(path)) == DiagnosticConfig()


class TestBuildConfig:
    """配置合并测试"""

    def test_thresholds(self):
        config = build_config({"thresholds": {"dns_lookup": {"good": 50}}})

        assert config.thresholds.dns_lookup == MetricThreshold(50, 200)
        assert config.thresholds.total == MetricThreshold(1000, 3000)

    def test_provider_signatures(self):
        config = build_config({"provider_signatures": [{"match": "myns", "label": "My DNS"}]})

        assert config.provider_signatures == (("myns", "My DNS"),)

    @pytest.mark.parametrize("data", [
        {"unknown": 1},
        {"timeouts": {"ping": 3}},
        {"timeouts": 5},
        {"thresholds": {"latency": {"good": 1}}},
        {"thresholds": {"ttfb": {"good": 2000, "acceptable": 1000}}},
        {"provider_signatures": [{"match": "x"}]},
    ])
    def test_invalid(self, data):
        with pytest.raises(ConfigError):
            build_config(data)
