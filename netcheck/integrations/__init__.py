"""
外部能力集成包

提供探测工具执行器、原始输出采集器和配置加载
"""
from .capture_sink import DirectoryCaptureSink
from .config_loader import ConfigError, DiagnosticConfig, load_config
from .probe_runner import ProbeRunner

__all__ = [
    "ProbeRunner",
    "DirectoryCaptureSink",
    "DiagnosticConfig",
    "ConfigError",
    "load_config",
]
