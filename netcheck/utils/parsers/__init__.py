"""
命令输出解析器包

提供各探测的纯函数解析器
"""
from .base import ParseError, ToolUnavailableError, floor_ms, seconds_to_ms
from .curl_parser import (
    CURL_TIMING_FORMAT,
    derive_segments,
    is_success_code,
    parse_curl_timing,
    parse_status_code,
)
from .dns_parser import (
    DEFAULT_PROVIDER_SIGNATURES,
    detect_provider,
    parse_a_records,
    parse_nameservers,
    parse_ttl,
)
from .stability_parser import mean_delta_jitter, range_jitter, summarize_samples
from .traceroute_parser import mark_bottlenecks, parse_traceroute_output

__all__ = [
    # 异常和工具函数
    "ParseError",
    "ToolUnavailableError",
    "floor_ms",
    "seconds_to_ms",
    # DNS
    "DEFAULT_PROVIDER_SIGNATURES",
    "parse_a_records",
    "parse_ttl",
    "parse_nameservers",
    "detect_provider",
    # 连接计时
    "CURL_TIMING_FORMAT",
    "parse_curl_timing",
    "derive_segments",
    "parse_status_code",
    "is_success_code",
    # 路由
    "parse_traceroute_output",
    "mark_bottlenecks",
    # 稳定性
    "summarize_samples",
    "range_jitter",
    "mean_delta_jitter",
]
