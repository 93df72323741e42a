"""
诊断流水线编排器

驱动 DNS门控 → 并行探测 → 分析 三个阶段，维护步骤状态并发布进度事件
"""
import asyncio
import logging
import time
from typing import Dict, Optional, Union

from ..integrations.config_loader import DiagnosticConfig
from ..integrations.probe_runner import ProbeRunner
from ..models.report import DiagnosticReport, IssueCategory, PipelineState
from ..models.results import ProbeError, ProbeErrorKind, ProbeOutcome
from ..models.task import DiagnosticRequest, DiagnosticStep, StepId, StepStatus
from ..utils.parsers import floor_ms, is_success_code
from .analyzer import AnalysisResult, DiagnosticAnalyzer
from .events import EventEmitter, ProgressEvent
from .executor import ProbeExecutor

logger = logging.getLogger(__name__)

STEP_ORDER = [
    StepId.DNS,
    StepId.TCP,
    StepId.SSL,
    StepId.HTTP,
    StepId.ROUTING,
    StepId.STABILITY,
]


class DiagnosticPipeline:
    """
    诊断流水线

    一个实例对应一次运行：
    - Idle → DnsPhase → ParallelPhase → AnalysisPhase → Done
    - DNS门控失败时 DnsPhase → Failed，后续探测不再启动
    - 单个探测的意外异常只影响该步骤，不影响兄弟探测和流水线
    """

    def __init__(
        self,
        executor: ProbeExecutor,
        analyzer: Optional[DiagnosticAnalyzer] = None,
        emitter: Optional[EventEmitter] = None
    ):
        """
        初始化流水线

        Args:
            executor: 探测执行引擎
            analyzer: 结果分析器（默认使用执行引擎的配置创建）
            emitter: 进度事件发布器
        """
        self.executor = executor
        self.analyzer = analyzer or DiagnosticAnalyzer(executor.config)
        self.emitter = emitter or EventEmitter()
        self.state = PipelineState.IDLE
        self.steps: Dict[StepId, DiagnosticStep] = {step_id: DiagnosticStep(step_id) for step_id in STEP_ORDER}
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def create(
        cls,
        config: Optional[DiagnosticConfig] = None,
        runner=None,
        sink=None
    ) -> "DiagnosticPipeline":
        """
        使用本机工具执行器创建流水线

        Args:
            config: 诊断配置
            runner: 探测工具执行器（默认 ProbeRunner）
            sink: 原始输出采集器
        """
        executor = ProbeExecutor(runner or ProbeRunner(), config, sink)
        return cls(executor)

    @property
    def config(self) -> DiagnosticConfig:
        return self.executor.config

    async def run(self, target: Union[str, DiagnosticRequest]) -> DiagnosticReport:
        """
        执行一次完整诊断

        Args:
            target: 域名/URL 或已创建的诊断请求

        Returns:
            DiagnosticReport: 诊断报告

        Raises:
            ValueError: 目标地址无效
            RuntimeError: 流水线已经运行过
            asyncio.CancelledError: 运行被取消
        """
        if self.state != PipelineState.IDLE:
            raise RuntimeError(f"流水线已处于 {self.state.value} 状态，不能重复运行")

        try:
            request = target if isinstance(target, DiagnosticRequest) else DiagnosticRequest.from_target(target)
            self._task = asyncio.current_task()
            logger.info("[Pipeline] 开始诊断 %s", request)
            report = await self._run(request)
            await self.emitter.join()
            return report
        except asyncio.CancelledError:
            logger.warning("[Pipeline] 诊断已取消")
            raise
        finally:
            self.emitter.close()

    def cancel(self) -> None:
        """取消正在进行的运行；进行中的外部进程会被终止"""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self, request: DiagnosticRequest) -> DiagnosticReport:
        start = time.monotonic()

        # 阶段一：DNS门控
        self._set_state(PipelineState.DNS_PHASE)
        await self._update_step(StepId.DNS, StepStatus.RUNNING, f"正在解析 {request.domain}")
        dns = await self._isolated("dns", self.executor.run_dns(request))
        await self._finish_dns(dns)

        if dns.error is not None or dns.result is None or not dns.result.resolved_ips:
            self._set_state(PipelineState.FAILED)
            logger.warning("[Pipeline] DNS门控失败，跳过后续探测: %s", dns)
            analysis = self.analyzer.analyze(dns)
            return self._build_report(request, analysis, start, dns)

        # 阶段二：三个探测并行，互不影响
        self._set_state(PipelineState.PARALLEL_PHASE)
        tcp, routing, stability = await asyncio.gather(
            self._connection_branch(request),
            self._routing_branch(request, dns.result.first_ip),
            self._stability_branch(request),
        )

        # 阶段三：分析
        self._set_state(PipelineState.ANALYSIS_PHASE)
        analysis = self.analyzer.analyze(dns, tcp, routing, stability)
        self._set_state(PipelineState.DONE)
        return self._build_report(request, analysis, start, dns, tcp, routing, stability)

    def _set_state(self, state: PipelineState) -> None:
        logger.debug("[Pipeline] %s -> %s", self.state.value, state.value)
        self.state = state

    async def _update_step(
        self,
        step_id: StepId,
        status: StepStatus,
        message: str,
        data: Optional[dict] = None,
        duration_ms: Optional[int] = None,
        recommendation: Optional[str] = None
    ) -> None:
        """推进步骤状态并发布事件"""
        self.steps[step_id].transition(
            status,
            result_text=message if status.is_terminal else None,
            duration_ms=duration_ms,
            recommendation=recommendation,
        )
        await self.emitter.publish(ProgressEvent(step_id=step_id, status=status, message=message, data=data))

    async def _isolated(self, probe: str, coro) -> ProbeOutcome:
        """运行探测，把意外异常转换为该探测的内部错误"""
        start = time.monotonic()
        try:
            return await coro
        except Exception as e:
            logger.exception("[Pipeline] %s 探测发生意外错误", probe)
            return ProbeOutcome(
                probe=probe,
                status=StepStatus.ERROR,
                error=ProbeError(ProbeErrorKind.INTERNAL_ERROR, f"{type(e).__name__}: {e}"),
                duration_ms=floor_ms((time.monotonic() - start) * 1000),
            )

    def _recommend(self, category: IssueCategory, outcome: ProbeOutcome) -> Optional[str]:
        if outcome.error is None:
            return None
        return self.analyzer.recommend_for_error(category, outcome.error)

    # ------------------------------------------------------------------
    # DNS
    # ------------------------------------------------------------------

    async def _finish_dns(self, dns: ProbeOutcome) -> None:
        if dns.error is not None:
            message = str(dns.error)
        else:
            result = dns.result
            message = f"解析到 {', '.join(result.resolved_ips)} ({result.lookup_time_ms}ms)"
        await self._update_step(
            StepId.DNS, dns.status, message,
            data=dns.to_dict(),
            duration_ms=dns.duration_ms,
            recommendation=self._recommend(IssueCategory.DNS, dns),
        )

    # ------------------------------------------------------------------
    # 连接计时（同时决定 tcp / ssl / http 三个步骤）
    # ------------------------------------------------------------------

    async def _connection_branch(self, request: DiagnosticRequest) -> ProbeOutcome:
        await self._update_step(StepId.TCP, StepStatus.RUNNING, f"正在连接 {request.target_url}")
        await self._update_step(StepId.SSL, StepStatus.RUNNING, "等待TLS握手计时")
        await self._update_step(StepId.HTTP, StepStatus.RUNNING, "等待HTTP响应")

        outcome = await self._isolated("tcp", self.executor.run_tcp(request))
        await self._finish_connection_steps(request, outcome)
        return outcome

    async def _finish_connection_steps(self, request: DiagnosticRequest, outcome: ProbeOutcome) -> None:
        duration = outcome.duration_ms
        data = outcome.to_dict()

        if outcome.error is not None or outcome.result is None:
            message = str(outcome.error) if outcome.error else "没有连接计时结果"
            await self._update_step(
                StepId.TCP, StepStatus.ERROR, message, data=data, duration_ms=duration,
                recommendation=self._recommend(IssueCategory.TCP, outcome),
            )
            await self._update_step(StepId.SSL, StepStatus.ERROR, "连接未建立，TLS握手未完成")
            await self._update_step(StepId.HTTP, StepStatus.ERROR, "没有收到HTTP响应")
            return

        result = outcome.result
        thresholds = self.config.thresholds

        tcp_status = StepStatus.SUCCESS
        if (result.total_ms >= thresholds.total.acceptable
                or result.tcp_connect_ms >= thresholds.tcp_connect.acceptable):
            tcp_status = StepStatus.WARNING
        await self._update_step(
            StepId.TCP, tcp_status,
            f"TCP连接 {result.tcp_connect_ms}ms，总耗时 {result.total_ms}ms",
            data=data, duration_ms=duration,
        )

        if request.scheme != "https":
            ssl_status, ssl_message = StepStatus.SUCCESS, "无TLS（HTTP目标）"
        elif result.ssl_ms == 0:
            ssl_status, ssl_message = StepStatus.ERROR, "TLS握手未完成"
        else:
            ssl_status = StepStatus.SUCCESS
            if result.ssl_handshake_ms >= thresholds.ssl_handshake.acceptable:
                ssl_status = StepStatus.WARNING
            ssl_message = f"TLS握手 {result.ssl_handshake_ms}ms"
        await self._update_step(StepId.SSL, ssl_status, ssl_message, duration_ms=result.ssl_handshake_ms)

        code = result.http_code
        if is_success_code(code):
            http_status = StepStatus.SUCCESS
        elif 400 <= code < 500:
            http_status = StepStatus.WARNING
        else:
            http_status = StepStatus.ERROR
        await self._update_step(
            StepId.HTTP, http_status,
            f"HTTP {code}，首字节 {result.ttfb_ms}ms",
            duration_ms=result.ttfb_ms,
        )

    # ------------------------------------------------------------------
    # 路由追踪
    # ------------------------------------------------------------------

    async def _routing_branch(self, request: DiagnosticRequest, target_ip: str) -> ProbeOutcome:
        await self._update_step(StepId.ROUTING, StepStatus.RUNNING, f"正在追踪到 {target_ip} 的路由")
        outcome = await self._isolated("routing", self.executor.run_routing(request, target_ip))

        if outcome.error is not None:
            message = str(outcome.error)
        else:
            routing = outcome.result
            message = f"共 {routing.total_hops} 跳，瓶颈 {len(routing.bottleneck_hops)} 个"

        await self._update_step(
            StepId.ROUTING, outcome.status, message,
            data=outcome.to_dict(),
            duration_ms=outcome.duration_ms,
            recommendation=self._recommend(IssueCategory.ROUTING, outcome),
        )
        return outcome

    # ------------------------------------------------------------------
    # 稳定性
    # ------------------------------------------------------------------

    async def _stability_branch(self, request: DiagnosticRequest) -> ProbeOutcome:
        samples = self.config.stability.samples
        await self._update_step(StepId.STABILITY, StepStatus.RUNNING, f"正在发送 {samples} 次测试请求")
        outcome = await self._isolated("stability", self.executor.run_stability(request))

        stability = outcome.result
        if stability is not None:
            message = (f"成功率 {stability.success_rate:.0f}%，平均 {stability.avg_time_ms}ms，"
                       f"抖动 {stability.mean_delta_jitter_ms}ms")
            if outcome.error is not None:
                message = f"{outcome.error}；{message}"
        else:
            message = str(outcome.error)

        await self._update_step(
            StepId.STABILITY, outcome.status, message,
            data=outcome.to_dict(),
            duration_ms=outcome.duration_ms,
            recommendation=self._recommend(IssueCategory.STABILITY, outcome),
        )
        return outcome

    def _build_report(
        self,
        request: DiagnosticRequest,
        analysis: AnalysisResult,
        start: float,
        dns: ProbeOutcome,
        tcp: Optional[ProbeOutcome] = None,
        routing: Optional[ProbeOutcome] = None,
        stability: Optional[ProbeOutcome] = None
    ) -> DiagnosticReport:
        report = DiagnosticReport(
            run_id=request.run_id,
            target_url=request.target_url,
            dns=dns,
            tcp=tcp,
            routing=routing,
            stability=stability,
            score=analysis.score,
            overall_status=analysis.overall_status,
            issues=analysis.issues,
            recommendations=analysis.recommendations,
            pipeline_state=self.state,
            steps=[self.steps[step_id] for step_id in STEP_ORDER],
            total_time_ms=floor_ms((time.monotonic() - start) * 1000),
        )
        logger.info("[Pipeline] 诊断完成 %s: %s (%d/100)",
                    request.target_url, report.overall_status.value, report.score)
        return report
