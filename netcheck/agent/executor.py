"""
探测执行引擎

调用诊断工具、解析输出，并把每个探测的结果统一包装为 ProbeOutcome
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Tuple

from ..integrations.config_loader import DiagnosticConfig
from ..models.results import (
    CommandResult,
    DnsResult,
    ProbeError,
    ProbeErrorKind,
    ProbeOutcome,
    StabilitySample,
)
from ..models.task import DiagnosticRequest, StepStatus
from ..utils.parsers import (
    CURL_TIMING_FORMAT,
    ParseError,
    ToolUnavailableError,
    detect_provider,
    floor_ms,
    is_success_code,
    mark_bottlenecks,
    parse_a_records,
    parse_curl_timing,
    parse_nameservers,
    parse_status_code,
    parse_traceroute_output,
    parse_ttl,
    summarize_samples,
)

logger = logging.getLogger(__name__)

# 让工具自身的超时先于子进程超时触发
_PROCESS_GRACE_SECONDS = 1
# curl: (28) Operation timed out
_CURL_TIMEOUT_EXIT = 28


class StabilityCollector:
    """稳定性采样收集器（容量固定，归单次探测所有）"""

    def __init__(self, capacity: int):
        self.capacity = capacity
        self.samples: List[StabilitySample] = []

    @property
    def full(self) -> bool:
        return len(self.samples) >= self.capacity

    def add(self, sample: StabilitySample) -> None:
        if self.full:
            raise OverflowError(f"采样数已达上限 {self.capacity}")
        self.samples.append(sample)


class ProbeExecutor:
    """
    探测执行引擎

    - 命令模板构建
    - 通过 ProbeRunner 调用外部工具
    - 调用解析器并把异常转换为错误标记
    """

    # 命令模板定义：(工具, 参数模板)
    COMMAND_TEMPLATES = {
        "dns_a": ("dig", ["+short", "{domain}", "A"]),
        "dns_ttl": ("dig", ["{domain}", "+noall", "+answer"]),
        "dns_ns": ("dig", ["{domain}", "NS", "+short"]),
        "tcp_timing": ("curl", [
            "-o", "/dev/null", "-s", "-L",
            "-w", "{timing_format}",
            "--connect-timeout", "{connect_timeout}",
            "--max-time", "{max_time}",
            "{url}",
        ]),
        "traceroute": ("traceroute", [
            "-n", "-m", "{max_hops}", "-w", "{wait}", "-q", "{queries}", "{domain}",
        ]),
        "stability_request": ("curl", [
            "-o", "/dev/null", "-s",
            "-w", "%{{http_code}}",
            "--connect-timeout", "{connect_timeout}",
            "--max-time", "{max_time}",
            "{url}",
        ]),
    }

    def __init__(self, runner, config: Optional[DiagnosticConfig] = None, sink=None):
        """
        初始化执行引擎

        Args:
            runner: 探测工具执行器（实现 invoke(tool, args, timeout)）
            config: 诊断配置
            sink: 原始输出采集器（可选，实现 write(name, content)）
        """
        self.runner = runner
        self.config = config or DiagnosticConfig()
        self.sink = sink

    def _build_command(self, template_name: str, **params) -> Tuple[str, List[str]]:
        """
        根据模板构建命令

        Raises:
            KeyError: 模板不存在或缺少参数
        """
        tool, arg_templates = self.COMMAND_TEMPLATES[template_name]
        return tool, [arg.format(**params) for arg in arg_templates]

    async def _invoke(self, template_name: str, timeout: float, **params) -> CommandResult:
        tool, args = self._build_command(template_name, **params)
        return await self.runner.invoke(tool, args, timeout)

    def _capture(self, name: str, content: str) -> None:
        """写入原始输出；采集失败不影响诊断"""
        if self.sink is None:
            return
        try:
            self.sink.write(name, content)
        except OSError as e:
            logger.warning("[ProbeExecutor] 原始输出写入失败 %s: %s", name, e)

    def _capture_result(self, name: str, result: CommandResult) -> None:
        self._capture(name, result.stdout)
        if result.stderr.strip():
            self._capture(f"{name}.stderr", result.stderr)

    async def _guarded(
        self,
        probe: str,
        timeout: Optional[float],
        body: Callable[[], Awaitable[ProbeOutcome]]
    ) -> ProbeOutcome:
        """
        执行探测主体并把已知异常转换为错误结局

        未预期的异常继续向上抛出，由流水线隔离处理
        """
        start = time.monotonic()
        try:
            outcome = await asyncio.wait_for(body(), timeout=timeout)
        except asyncio.TimeoutError:
            outcome = _error_outcome(probe, ProbeErrorKind.TIMEOUT, f"{probe} 探测超过 {timeout}s 未完成")
        except ToolUnavailableError as e:
            outcome = _error_outcome(probe, ProbeErrorKind.TOOL_UNAVAILABLE, str(e))
        except ParseError as e:
            outcome = _error_outcome(probe, ProbeErrorKind.PARSE_ERROR, str(e), raw_output=e.raw_output)

        outcome.duration_ms = floor_ms((time.monotonic() - start) * 1000)
        if outcome.error:
            logger.info("[ProbeExecutor] %s", outcome)
        return outcome

    # ------------------------------------------------------------------
    # DNS
    # ------------------------------------------------------------------

    async def run_dns(self, request: DiagnosticRequest) -> ProbeOutcome:
        """
        DNS探测（门控阶段）

        A记录为空或超时即为门控失败；TTL和NS查询失败只记为异常说明
        """
        # 三次查询各自有超时，整体不再额外限时
        return await self._guarded("dns", None, lambda: self._dns_body(request))

    async def _dns_body(self, request: DiagnosticRequest) -> ProbeOutcome:
        timeout = self.config.timeouts.dns
        a_result = await self._invoke("dns_a", timeout, domain=request.domain)
        self._capture_result("01_dns_a_records.txt", a_result)

        if a_result.timed_out:
            return _error_outcome("dns", ProbeErrorKind.TIMEOUT, f"DNS查询在 {timeout}s 内没有返回")

        ips, cnames = parse_a_records(a_result)
        dns = DnsResult(
            domain=request.domain,
            resolved_ips=ips,
            lookup_time_ms=a_result.elapsed_ms,
            cname_chain=cnames,
        )
        if not ips:
            outcome = _error_outcome(
                "dns", ProbeErrorKind.NETWORK_UNREACHABLE,
                f"没有解析到 {request.domain} 的任何地址",
                raw_output=a_result.stdout + a_result.stderr,
            )
            outcome.result = dns
            return outcome

        ttl_result, ns_result = await asyncio.gather(
            self._invoke("dns_ttl", timeout, domain=request.domain),
            self._invoke("dns_ns", timeout, domain=request.domain),
        )
        self._capture_result("01_dns_answer.txt", ttl_result)
        self._capture_result("01_dns_nameservers.txt", ns_result)

        anomalies: List[str] = []
        dns.ttl = _secondary(ttl_result, parse_ttl, "TTL", anomalies)
        dns.nameservers = _secondary(ns_result, parse_nameservers, "NS", anomalies) or []
        dns.provider = detect_provider(dns.nameservers + dns.cname_chain, self.config.provider_signatures)

        status = StepStatus.SUCCESS
        if dns.lookup_time_ms > self.config.thresholds.dns_lookup.good:
            status = StepStatus.WARNING

        logger.info("[DnsProbe] %s -> %s (%dms)", request.domain, ips, dns.lookup_time_ms)
        return ProbeOutcome(probe="dns", status=status, result=dns, anomalies=anomalies)

    # ------------------------------------------------------------------
    # 连接计时
    # ------------------------------------------------------------------

    async def run_tcp(self, request: DiagnosticRequest) -> ProbeOutcome:
        """连接计时探测：一次请求获取各阶段累计计时"""
        timeout = self.config.timeouts.tcp + 2 * _PROCESS_GRACE_SECONDS
        return await self._guarded("tcp", timeout, lambda: self._tcp_body(request))

    async def _tcp_body(self, request: DiagnosticRequest) -> ProbeOutcome:
        timeouts = self.config.timeouts
        result = await self._invoke(
            "tcp_timing",
            timeouts.tcp + _PROCESS_GRACE_SECONDS,
            timing_format=CURL_TIMING_FORMAT,
            connect_timeout=_seconds_arg(timeouts.tcp_connect),
            max_time=_seconds_arg(timeouts.tcp),
            url=request.target_url,
        )
        self._capture_result("02_tcp_timing.json", result)

        if result.timed_out or result.exit_code == _CURL_TIMEOUT_EXIT:
            return _error_outcome("tcp", ProbeErrorKind.TIMEOUT, f"连接在 {timeouts.tcp}s 内没有完成")

        tcp = parse_curl_timing(result, request.scheme)
        if not tcp.is_reachable or result.exit_code != 0:
            outcome = _error_outcome(
                "tcp", ProbeErrorKind.NETWORK_UNREACHABLE,
                f"HTTP请求失败 (curl exit={result.exit_code}, HTTP {tcp.http_code})",
                raw_output=result.stdout + result.stderr,
            )
            outcome.result = tcp
            outcome.anomalies = list(tcp.anomalies)
            return outcome

        thresholds = self.config.thresholds
        status = StepStatus.SUCCESS
        if (tcp.total_ms >= thresholds.total.acceptable
                or tcp.tcp_connect_ms >= thresholds.tcp_connect.acceptable
                or tcp.http_code >= 400):
            status = StepStatus.WARNING

        logger.info("[TcpProbe] %s HTTP %d total=%dms", request.target_url, tcp.http_code, tcp.total_ms)
        return ProbeOutcome(probe="tcp", status=status, result=tcp, anomalies=list(tcp.anomalies))

    # ------------------------------------------------------------------
    # 路由追踪
    # ------------------------------------------------------------------

    async def run_routing(self, request: DiagnosticRequest, target_ip: str) -> ProbeOutcome:
        """路由追踪探测：限制跳数、每跳等待时间和探测次数"""
        timeout = self.config.timeouts.routing + _PROCESS_GRACE_SECONDS
        return await self._guarded("routing", timeout, lambda: self._routing_body(request, target_ip))

    async def _routing_body(self, request: DiagnosticRequest, target_ip: str) -> ProbeOutcome:
        settings = self.config.routing
        result = await self._invoke(
            "traceroute",
            self.config.timeouts.routing,
            max_hops=settings.max_hops,
            wait=settings.wait_seconds,
            queries=settings.queries_per_hop,
            domain=request.domain,
        )
        self._capture_result("03_traceroute.txt", result)

        if result.timed_out:
            return _error_outcome(
                "routing", ProbeErrorKind.TIMEOUT,
                f"traceroute 在 {self.config.timeouts.routing}s 内没有完成",
            )

        routing = parse_traceroute_output(result, target_ip)
        routing = mark_bottlenecks(routing, settings.bottleneck_delta_ms, settings.bottleneck_ceiling_ms)

        anomalies = []
        unresponsive = routing.unresponsive_hops
        if unresponsive:
            anomalies.append(f"{ProbeErrorKind.PARTIAL_DEGRADATION.value}: {unresponsive} 个跳点无响应")

        unresponsive_percent = unresponsive / routing.total_hops * 100
        status = StepStatus.SUCCESS
        if routing.bottleneck_hops or unresponsive_percent > settings.unresponsive_warn_percent:
            status = StepStatus.WARNING

        logger.info("[RoutingProbe] %s: %d 跳, 瓶颈 %s",
                    request.domain, routing.total_hops, routing.bottleneck_hops)
        return ProbeOutcome(probe="routing", status=status, result=routing, anomalies=anomalies)

    # ------------------------------------------------------------------
    # 稳定性
    # ------------------------------------------------------------------

    async def run_stability(self, request: DiagnosticRequest) -> ProbeOutcome:
        """
        稳定性探测：顺序发送N次轻量请求

        整体超时时汇总已完成的采样
        """
        collector = StabilityCollector(self.config.stability.samples)
        outcome = await self._guarded(
            "stability",
            self.config.timeouts.stability,
            lambda: self._stability_body(request, collector),
        )
        if outcome.result is None and collector.samples:
            outcome.result = summarize_samples(collector.samples)
        return outcome

    async def _stability_body(self, request: DiagnosticRequest, collector: StabilityCollector) -> ProbeOutcome:
        settings = self.config.stability
        timeouts = self.config.timeouts
        anomalies: List[str] = []

        for attempt in range(1, settings.samples + 1):
            result = await self._invoke(
                "stability_request",
                timeouts.stability_attempt + _PROCESS_GRACE_SECONDS,
                connect_timeout=_seconds_arg(timeouts.stability_connect),
                max_time=_seconds_arg(timeouts.stability_attempt),
                url=request.target_url,
            )
            collector.add(self._to_sample(attempt, result, anomalies))
            if attempt < settings.samples:
                await asyncio.sleep(settings.interval_ms / 1000)

        self._capture("04_stability_samples.txt", _format_samples(collector.samples))

        stability = summarize_samples(collector.samples)
        if stability.success_rate == 0:
            outcome = _error_outcome(
                "stability", ProbeErrorKind.NETWORK_UNREACHABLE,
                f"{stability.total_tests} 次请求全部失败",
            )
            outcome.result = stability
            outcome.anomalies = anomalies
            return outcome

        status = StepStatus.SUCCESS
        if stability.success_rate < 80:
            status = StepStatus.ERROR
        elif stability.success_rate < 100 or stability.mean_delta_jitter_ms > settings.jitter_threshold_ms:
            status = StepStatus.WARNING

        logger.info("[StabilityProbe] %s: %.0f%% 成功, avg %dms",
                    request.target_url, stability.success_rate, stability.avg_time_ms)
        return ProbeOutcome(probe="stability", status=status, result=stability, anomalies=anomalies)

    @staticmethod
    def _to_sample(attempt: int, result: CommandResult, anomalies: List[str]) -> StabilitySample:
        """把单次请求结果转换为采样"""
        if result.timed_out or result.exit_code == _CURL_TIMEOUT_EXIT:
            return StabilitySample(attempt=attempt, success=False, elapsed_ms=result.elapsed_ms, error="超时")

        try:
            http_code = parse_status_code(result)
        except ParseError as e:
            anomalies.append(f"第 {attempt} 次请求输出无法解析: {e.raw_output!r}")
            return StabilitySample(attempt=attempt, success=False, elapsed_ms=result.elapsed_ms, error=str(e))

        success = result.exit_code == 0 and is_success_code(http_code)
        error = None
        if result.exit_code != 0 or not http_code:
            error = f"curl exit={result.exit_code}"
        elif not success:
            error = f"HTTP {http_code}"
        return StabilitySample(
            attempt=attempt,
            success=success,
            elapsed_ms=result.elapsed_ms,
            http_code=http_code,
            error=error,
        )


def _error_outcome(probe: str, kind: ProbeErrorKind, message: str,
                   raw_output: Optional[str] = None) -> ProbeOutcome:
    return ProbeOutcome(
        probe=probe,
        status=StepStatus.ERROR,
        error=ProbeError(kind=kind, message=message, raw_output=raw_output),
    )


def _secondary(result: CommandResult, parser, label: str, anomalies: List[str]):
    """次要查询：失败时记录降级说明并返回None"""
    if result.timed_out:
        anomalies.append(f"{ProbeErrorKind.PARTIAL_DEGRADATION.value}: {label} 查询超时")
        return None
    try:
        return parser(result)
    except (ParseError, ToolUnavailableError) as e:
        anomalies.append(f"{ProbeErrorKind.PARTIAL_DEGRADATION.value}: {label} 查询失败 ({e})")
        return None


def _seconds_arg(value: float) -> str:
    """命令行秒数参数，整数不带小数点"""
    return str(int(value)) if float(value).is_integer() else str(value)


def _format_samples(samples: List[StabilitySample]) -> str:
    lines = ["attempt,success,http_code,elapsed_ms,error"]
    for sample in samples:
        lines.append(
            f"{sample.attempt},{sample.success},{sample.http_code or ''},"
            f"{sample.elapsed_ms},{sample.error or ''}"
        )
    return "\n".join(lines) + "\n"
