"""
诊断配置加载器

从YAML配置文件加载超时、阈值和采样参数
"""
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..utils.parsers.dns_parser import DEFAULT_PROVIDER_SIGNATURES

CONFIG_ENV_VAR = "NETCHECK_CONFIG"


class ConfigError(Exception):
    """配置文件内容错误"""
    pass


@dataclass(frozen=True)
class ProbeTimeouts:
    """各探测超时（秒）"""
    dns: float = 5
    tcp: float = 30
    tcp_connect: float = 10
    routing: float = 30
    stability: float = 60
    stability_connect: float = 3
    stability_attempt: float = 5


@dataclass(frozen=True)
class MetricThreshold:
    """单项指标阈值：< good 为良好，< acceptable 为可接受，否则为慢"""
    good: int
    acceptable: int


@dataclass(frozen=True)
class MetricThresholds:
    """各阶段耗时阈值（毫秒）"""
    dns_lookup: MetricThreshold = MetricThreshold(100, 200)
    tcp_connect: MetricThreshold = MetricThreshold(200, 500)
    ssl_handshake: MetricThreshold = MetricThreshold(300, 500)
    ttfb: MetricThreshold = MetricThreshold(500, 1000)
    total: MetricThreshold = MetricThreshold(1000, 3000)


@dataclass(frozen=True)
class RoutingSettings:
    """路由追踪参数"""
    max_hops: int = 15
    wait_seconds: int = 1
    queries_per_hop: int = 1
    bottleneck_delta_ms: int = 50
    bottleneck_ceiling_ms: int = 150
    unresponsive_warn_percent: float = 30.0


@dataclass(frozen=True)
class StabilitySettings:
    """稳定性采样参数"""
    samples: int = 10
    interval_ms: int = 100
    jitter_threshold_ms: int = 100


@dataclass(frozen=True)
class DiagnosticConfig:
    """诊断总配置"""
    timeouts: ProbeTimeouts = ProbeTimeouts()
    thresholds: MetricThresholds = MetricThresholds()
    routing: RoutingSettings = RoutingSettings()
    stability: StabilitySettings = StabilitySettings()
    provider_signatures: Tuple[Tuple[str, str], ...] = DEFAULT_PROVIDER_SIGNATURES
    output_dir: str = "runtime/runs"


def default_config_path() -> Path:
    """默认配置文件路径"""
    project_root = Path(__file__).parent.parent.parent
    return project_root / "config" / "netcheck.yaml"


def load_config(config_path: Optional[str] = None) -> DiagnosticConfig:
    """
    加载诊断配置

    查找顺序：显式路径 → $NETCHECK_CONFIG → 默认配置文件 → 内置默认值

    Args:
        config_path: 配置文件路径

    Returns:
        DiagnosticConfig

    Raises:
        FileNotFoundError: 显式指定的配置文件不存在
        ConfigError: 配置项不合法
        yaml.YAMLError: 配置文件格式错误
    """
    explicit = config_path or os.getenv(CONFIG_ENV_VAR)
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise FileNotFoundError(f"诊断配置文件不存在: {path}")
    else:
        path = default_config_path()
        if not path.exists():
            return DiagnosticConfig()

    with open(path, 'r', encoding='utf-8') as f:
        config_data = yaml.safe_load(f) or {}

    if not isinstance(config_data, dict):
        raise ConfigError(f"配置文件顶层必须是映射: {path}")

    return build_config(_expand_env(config_data))


def build_config(data: Dict[str, Any]) -> DiagnosticConfig:
    """
    把配置字典合并到默认配置上

    未出现的键保留默认值，未知的键报错
    """
    config = DiagnosticConfig()
    updates: Dict[str, Any] = {}

    if "timeouts" in data:
        updates["timeouts"] = _merge(config.timeouts, data["timeouts"], "timeouts")
    if "routing" in data:
        updates["routing"] = _merge(config.routing, data["routing"], "routing")
    if "stability" in data:
        updates["stability"] = _merge(config.stability, data["stability"], "stability")
    if "thresholds" in data:
        updates["thresholds"] = _merge_thresholds(config.thresholds, data["thresholds"])
    if "provider_signatures" in data:
        updates["provider_signatures"] = _parse_signatures(data["provider_signatures"])
    if "output_dir" in data:
        updates["output_dir"] = str(data["output_dir"])

    unknown = set(data) - {"timeouts", "routing", "stability", "thresholds",
                           "provider_signatures", "output_dir"}
    if unknown:
        raise ConfigError(f"未知的配置项: {', '.join(sorted(unknown))}")

    return replace(config, **updates)


def _merge(section: Any, values: Any, name: str) -> Any:
    if not isinstance(values, dict):
        raise ConfigError(f"配置项 {name} 必须是映射")
    known = {f.name for f in fields(section)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"配置项 {name} 中有未知的键: {', '.join(sorted(unknown))}")
    return replace(section, **values)


def _merge_thresholds(thresholds: MetricThresholds, values: Any) -> MetricThresholds:
    if not isinstance(values, dict):
        raise ConfigError("配置项 thresholds 必须是映射")
    known = {f.name for f in fields(thresholds)}
    updates = {}
    for metric, bands in values.items():
        if metric not in known:
            raise ConfigError(f"未知的阈值指标: {metric}")
        current = getattr(thresholds, metric)
        threshold = _merge(current, bands, f"thresholds.{metric}")
        if threshold.good > threshold.acceptable:
            raise ConfigError(f"阈值 {metric} 的 good 不能大于 acceptable")
        updates[metric] = threshold
    return replace(thresholds, **updates)


def _parse_signatures(values: Any) -> Tuple[Tuple[str, str], ...]:
    """支持 [{match: cloudflare, label: Cloudflare}, ...] 格式，保持顺序"""
    if not isinstance(values, list):
        raise ConfigError("provider_signatures 必须是列表")
    signatures: List[Tuple[str, str]] = []
    for item in values:
        if not isinstance(item, dict) or "match" not in item or "label" not in item:
            raise ConfigError(f"provider_signatures 条目格式错误: {item!r}")
        signatures.append((str(item["match"]), str(item["label"])))
    return tuple(signatures)


def _expand_env(value: Any) -> Any:
    """替换 ${VAR} 形式的环境变量"""
    if isinstance(value, dict):
        return {key: _expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    if isinstance(value, str) and value.startswith('${') and value.endswith('}'):
        return os.getenv(value[2:-1], '')
    return value
