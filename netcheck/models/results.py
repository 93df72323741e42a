"""
执行结果相关数据模型
定义外部工具调用结果、各探测的类型化结果和探测结局
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .task import StepStatus


@dataclass
class CommandResult:
    """
    外部工具执行结果

    记录单次工具调用的原始输出
    """
    tool: str                           # 工具名称（dig/curl/traceroute）
    args: List[str]                     # 调用参数
    stdout: str                         # 标准输出
    stderr: str                         # 标准错误输出
    exit_code: int                      # 退出码（超时为 -1）
    elapsed_ms: int                     # 执行耗时（毫秒，向下取整）
    timed_out: bool = False             # 是否超时被终止
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def command(self) -> str:
        return " ".join([self.tool, *self.args])

    def __str__(self) -> str:
        status = "OK" if self.success else "FAIL"
        return (f"[{status}] {self.command} "
                f"(exit={self.exit_code}, time={self.elapsed_ms}ms)")

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "tool": self.tool,
            "args": list(self.args),
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exit_code": self.exit_code,
            "elapsed_ms": self.elapsed_ms,
            "timed_out": self.timed_out,
            "timestamp": self.timestamp.isoformat(),
        }


class ProbeErrorKind(str, Enum):
    """探测错误分类"""
    TOOL_UNAVAILABLE = "tool_unavailable"        # 工具不存在或不可执行
    TIMEOUT = "timeout"                          # 超时
    PARSE_ERROR = "parse_error"                  # 输出格式无法解析
    NETWORK_UNREACHABLE = "network_unreachable"  # DNS/HTTP完全失败
    PARTIAL_DEGRADATION = "partial_degradation"  # 部分数据缺失但整体可用
    INTERNAL_ERROR = "internal_error"            # 探测内部的意外异常


@dataclass
class ProbeError:
    """探测错误标记"""
    kind: ProbeErrorKind
    message: str
    raw_output: Optional[str] = None    # 解析失败时保留原始输出供排查

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "raw_output": self.raw_output,
        }


@dataclass
class DnsResult:
    """DNS解析结果"""
    domain: str
    resolved_ips: List[str]             # 按返回顺序，不去重
    lookup_time_ms: int
    ttl: Optional[int] = None
    nameservers: List[str] = field(default_factory=list)
    cname_chain: List[str] = field(default_factory=list)
    provider: Optional[str] = None      # 根据NS识别的CDN/托管商

    @property
    def first_ip(self) -> Optional[str]:
        return self.resolved_ips[0] if self.resolved_ips else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "resolved_ips": list(self.resolved_ips),
            "lookup_time_ms": self.lookup_time_ms,
            "ttl": self.ttl,
            "nameservers": list(self.nameservers),
            "cname_chain": list(self.cname_chain),
            "provider": self.provider,
        }


@dataclass
class TcpResult:
    """
    连接计时结果

    五个累计计时器（毫秒）单调不减；派生分段已截断为 >= 0
    """
    dns_ms: int
    connect_ms: int
    ssl_ms: int
    ttfb_ms: int
    total_ms: int
    http_code: int
    download_speed_kbps: float
    tcp_connect_ms: int = 0             # connect - dns
    ssl_handshake_ms: int = 0           # ssl - connect
    server_wait_ms: int = 0             # ttfb - ssl
    transfer_ms: int = 0                # total - ttfb
    anomalies: List[str] = field(default_factory=list)

    @property
    def is_reachable(self) -> bool:
        return self.http_code != 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dns_ms": self.dns_ms,
            "connect_ms": self.connect_ms,
            "ssl_ms": self.ssl_ms,
            "ttfb_ms": self.ttfb_ms,
            "total_ms": self.total_ms,
            "http_code": self.http_code,
            "download_speed_kbps": self.download_speed_kbps,
            "tcp_connect_ms": self.tcp_connect_ms,
            "ssl_handshake_ms": self.ssl_handshake_ms,
            "server_wait_ms": self.server_wait_ms,
            "transfer_ms": self.transfer_ms,
            "anomalies": list(self.anomalies),
        }


@dataclass
class RouteHop:
    """路由单个跳点"""
    hop_number: int
    ip_address: Optional[str]           # None表示该跳无响应（*）
    hostname: Optional[str] = None
    rtt_ms: Optional[int] = None
    packet_loss_percent: float = 0.0
    is_bottleneck: bool = False

    @property
    def is_timeout(self) -> bool:
        return self.ip_address is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hop_number": self.hop_number,
            "ip_address": self.ip_address,
            "hostname": self.hostname,
            "rtt_ms": self.rtt_ms,
            "packet_loss_percent": self.packet_loss_percent,
            "is_bottleneck": self.is_bottleneck,
        }


@dataclass
class RoutingResult:
    """路由追踪完整结果"""
    target_ip: str
    hops: List[RouteHop]
    total_hops: int
    total_time_ms: int
    bottleneck_hops: List[int] = field(default_factory=list)  # 瓶颈跳点的hop编号

    @property
    def unresponsive_hops(self) -> int:
        return sum(1 for hop in self.hops if hop.is_timeout)

    @property
    def reached_target(self) -> bool:
        responding = [hop for hop in self.hops if not hop.is_timeout]
        return bool(responding) and responding[-1].ip_address == self.target_ip

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_ip": self.target_ip,
            "hops": [hop.to_dict() for hop in self.hops],
            "total_hops": self.total_hops,
            "total_time_ms": self.total_time_ms,
            "bottleneck_hops": list(self.bottleneck_hops),
        }


@dataclass
class StabilitySample:
    """稳定性测试单次采样"""
    attempt: int
    success: bool
    elapsed_ms: int
    http_code: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt": self.attempt,
            "success": self.success,
            "elapsed_ms": self.elapsed_ms,
            "http_code": self.http_code,
            "error": self.error,
        }


@dataclass
class StabilityResult:
    """
    连接稳定性结果

    min/avg/max只统计成功的采样；抖动同时给出两种定义
    """
    total_tests: int
    successful_tests: int
    success_rate: float                 # successful_tests / total_tests * 100
    min_time_ms: int
    avg_time_ms: int
    max_time_ms: int
    range_jitter_ms: int                # max - min
    mean_delta_jitter_ms: int           # 相邻成功采样差值绝对值的均值
    samples: List[StabilitySample] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tests": self.total_tests,
            "successful_tests": self.successful_tests,
            "success_rate": self.success_rate,
            "min_time_ms": self.min_time_ms,
            "avg_time_ms": self.avg_time_ms,
            "max_time_ms": self.max_time_ms,
            "range_jitter_ms": self.range_jitter_ms,
            "mean_delta_jitter_ms": self.mean_delta_jitter_ms,
            "samples": [sample.to_dict() for sample in self.samples],
        }


ProbeResult = Union[DnsResult, TcpResult, RoutingResult, StabilityResult]


@dataclass
class ProbeOutcome:
    """
    探测结局

    每个探测执行器的统一返回值：类型化结果和/或错误标记
    """
    probe: str                          # dns | tcp | routing | stability
    status: StepStatus                  # 终态
    result: Optional[ProbeResult] = None
    error: Optional[ProbeError] = None
    duration_ms: int = 0
    anomalies: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        if self.error:
            return f"{self.probe}: {self.status.value} ({self.error})"
        return f"{self.probe}: {self.status.value}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "probe": self.probe,
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error.to_dict() if self.error else None,
            "duration_ms": self.duration_ms,
            "anomalies": list(self.anomalies),
        }
