"""
结果分析器

汇总四个探测结局，按阈值表识别问题、计算健康分并生成修复建议
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..integrations.config_loader import DiagnosticConfig, MetricThreshold
from ..models.report import Issue, IssueCategory, IssueSeverity, OverallStatus
from ..models.results import ProbeError, ProbeErrorKind, ProbeOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssueTemplate:
    """问题模板：描述中的 {占位符} 在生成问题时填充"""
    category: IssueCategory
    severity: IssueSeverity
    title: str
    description: str
    possible_causes: Tuple[str, ...] = ()
    solutions: Tuple[str, ...] = ()

    def build(self, **values) -> Issue:
        return Issue(
            category=self.category,
            severity=self.severity,
            title=self.title.format(**values),
            description=self.description.format(**values),
            possible_causes=list(self.possible_causes),
            solutions=list(self.solutions),
        )


@dataclass
class AnalysisResult:
    """分析结论"""
    score: int
    overall_status: OverallStatus
    issues: List[Issue] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    hard_failure: bool = False


CATEGORY_LABELS = {
    IssueCategory.DNS: "DNS解析",
    IssueCategory.TCP: "TCP连接",
    IssueCategory.SSL: "SSL握手",
    IssueCategory.HTTP: "HTTP响应",
    IssueCategory.ROUTING: "路由追踪",
    IssueCategory.STABILITY: "连接稳定性",
}

ERROR_KIND_LABELS = {
    ProbeErrorKind.TOOL_UNAVAILABLE: "诊断工具不可用",
    ProbeErrorKind.TIMEOUT: "探测超时",
    ProbeErrorKind.PARSE_ERROR: "输出无法解析",
    ProbeErrorKind.NETWORK_UNREACHABLE: "网络不可达",
    ProbeErrorKind.PARTIAL_DEGRADATION: "部分数据缺失",
    ProbeErrorKind.INTERNAL_ERROR: "探测内部错误",
}

# 各指标在 可接受/慢 区间的扣分
BAND_DEDUCTIONS = {
    "dns_lookup": (3, 10),
    "tcp_connect": (3, 15),
    "ssl_handshake": (3, 10),
    "ttfb": (5, 15),
    "total": (5, 15),
}

BOTTLENECK_DEDUCTION = 5
BOTTLENECK_DEDUCTION_CAP = 15
ROUTING_ERROR_DEDUCTION = 5
STABILITY_PARTIAL_DEDUCTION = 10
STABILITY_POOR_DEDUCTION = 30
STABILITY_POOR_RATE = 80
JITTER_DEDUCTION = 5
STABILITY_ERROR_DEDUCTION = 10
HTTP_CLIENT_ERROR_DEDUCTION = 10
HTTP_SERVER_ERROR_DEDUCTION = 20


# ----------------------------------------------------------------------
# 指标阈值问题（按 (指标, 严重程度) 查表）
# ----------------------------------------------------------------------

METRIC_TEMPLATES: Dict[Tuple[str, IssueSeverity], IssueTemplate] = {
    ("dns_lookup", IssueSeverity.INFO): IssueTemplate(
        IssueCategory.DNS, IssueSeverity.INFO,
        "DNS解析略慢",
        "DNS解析耗时 {value}ms，超过良好阈值 {good}ms",
        ("本地DNS服务器缓存未命中", "DNS服务器距离较远"),
        ("考虑使用响应更快的公共DNS（如 223.5.5.5 / 8.8.8.8）",),
    ),
    ("dns_lookup", IssueSeverity.WARNING): IssueTemplate(
        IssueCategory.DNS, IssueSeverity.WARNING,
        "DNS解析缓慢",
        "DNS解析耗时 {value}ms，超过可接受阈值 {acceptable}ms",
        ("DNS服务器负载过高或不可用", "解析链路过长（多级CNAME）", "本地网络到DNS服务器丢包"),
        ("考虑使用响应更快的公共DNS（如 223.5.5.5 / 8.8.8.8）", "检查本机 /etc/resolv.conf 配置",
         "适当增大记录TTL以提高缓存命中率"),
    ),
    ("tcp_connect", IssueSeverity.INFO): IssueTemplate(
        IssueCategory.TCP, IssueSeverity.INFO,
        "TCP连接略慢",
        "TCP建连耗时 {value}ms，超过良好阈值 {good}ms",
        ("客户端到服务器的物理距离较远",),
        ("如用户分布较广，考虑使用CDN就近接入",),
    ),
    ("tcp_connect", IssueSeverity.WARNING): IssueTemplate(
        IssueCategory.TCP, IssueSeverity.WARNING,
        "TCP连接缓慢",
        "TCP建连耗时 {value}ms，超过可接受阈值 {acceptable}ms",
        ("网络链路拥塞或丢包", "服务器 backlog 已满或负载过高", "中间防火墙限速"),
        ("如用户分布较广，考虑使用CDN就近接入", "检查服务器连接队列（ss -lnt）和负载",
         "结合路由追踪定位高延迟链路"),
    ),
    ("ssl_handshake", IssueSeverity.INFO): IssueTemplate(
        IssueCategory.SSL, IssueSeverity.INFO,
        "SSL握手略慢",
        "TLS握手耗时 {value}ms，超过良好阈值 {good}ms",
        ("证书链较长",),
        ("启用TLS会话复用（session ticket）",),
    ),
    ("ssl_handshake", IssueSeverity.WARNING): IssueTemplate(
        IssueCategory.SSL, IssueSeverity.WARNING,
        "SSL握手缓慢",
        "TLS握手耗时 {value}ms，超过可接受阈值 {acceptable}ms",
        ("证书链过长或包含不必要的中间证书", "OCSP查询阻塞握手", "服务器CPU不足"),
        ("启用TLS会话复用（session ticket）", "开启 OCSP Stapling", "升级到 TLS 1.3 减少握手往返"),
    ),
    ("ttfb", IssueSeverity.INFO): IssueTemplate(
        IssueCategory.HTTP, IssueSeverity.INFO,
        "首字节时间略长",
        "首字节时间(TTFB) {value}ms，超过良好阈值 {good}ms",
        ("后端处理耗时偏长",),
        ("检查后端接口耗时，考虑增加缓存",),
    ),
    ("ttfb", IssueSeverity.WARNING): IssueTemplate(
        IssueCategory.HTTP, IssueSeverity.WARNING,
        "首字节时间过长",
        "首字节时间(TTFB) {value}ms，超过可接受阈值 {acceptable}ms",
        ("后端应用处理慢（慢查询、外部依赖）", "服务器资源不足", "未命中缓存"),
        ("检查后端接口耗时，考虑增加缓存", "排查数据库慢查询日志", "检查服务器CPU/内存使用情况"),
    ),
    ("total", IssueSeverity.INFO): IssueTemplate(
        IssueCategory.HTTP, IssueSeverity.INFO,
        "总响应时间略长",
        "请求总耗时 {value}ms，超过良好阈值 {good}ms",
        ("响应体较大",),
        ("开启 gzip/br 压缩",),
    ),
    ("total", IssueSeverity.WARNING): IssueTemplate(
        IssueCategory.HTTP, IssueSeverity.WARNING,
        "总响应时间过长",
        "请求总耗时 {value}ms，超过可接受阈值 {acceptable}ms",
        ("响应体过大", "多次重定向", "带宽不足"),
        ("开启 gzip/br 压缩", "减少重定向次数", "静态资源使用CDN分发"),
    ),
}


# ----------------------------------------------------------------------
# 探测错误问题（有序规则，第一条匹配的生效）
# ----------------------------------------------------------------------

# (类别, 错误类型, 模板)；类别或错误类型为 None 表示匹配任意
PROBE_ERROR_RULES: List[Tuple[Optional[IssueCategory], Optional[ProbeErrorKind], IssueTemplate]] = [
    (IssueCategory.DNS, ProbeErrorKind.NETWORK_UNREACHABLE, IssueTemplate(
        IssueCategory.DNS, IssueSeverity.ERROR,
        "域名无法解析",
        "{message}",
        ("域名不存在或已过期", "DNS记录未配置A记录", "本地DNS服务器不可用"),
        ("使用 whois 确认域名注册状态", "检查域名的A记录配置", "尝试更换DNS服务器后重试"),
    )),
    (IssueCategory.DNS, ProbeErrorKind.TIMEOUT, IssueTemplate(
        IssueCategory.DNS, IssueSeverity.ERROR,
        "DNS查询超时",
        "{message}",
        ("DNS服务器无响应", "本机网络中断", "防火墙拦截了UDP 53端口"),
        ("检查本机网络连接", "尝试更换DNS服务器后重试", "确认防火墙未拦截DNS流量"),
    )),
    (IssueCategory.TCP, ProbeErrorKind.NETWORK_UNREACHABLE, IssueTemplate(
        IssueCategory.TCP, IssueSeverity.ERROR,
        "目标服务不可达",
        "{message}",
        ("服务未启动或端口未监听", "防火墙拒绝连接", "证书校验失败"),
        ("确认目标服务运行状态和监听端口", "检查安全组和防火墙规则", "使用 curl -v 查看详细错误"),
    )),
    (IssueCategory.TCP, ProbeErrorKind.TIMEOUT, IssueTemplate(
        IssueCategory.TCP, IssueSeverity.ERROR,
        "连接超时",
        "{message}",
        ("服务器无响应", "网络链路中断或严重丢包", "防火墙静默丢弃(DROP)数据包"),
        ("检查安全组和防火墙规则", "结合路由追踪定位中断位置", "确认服务器负载是否正常"),
    )),
    (IssueCategory.STABILITY, ProbeErrorKind.NETWORK_UNREACHABLE, IssueTemplate(
        IssueCategory.STABILITY, IssueSeverity.ERROR,
        "连续请求全部失败",
        "{message}",
        ("服务不可用", "请求被限流或封禁"),
        ("确认目标服务运行状态和监听端口", "检查是否触发了访问频率限制"),
    )),
    (None, ProbeErrorKind.TOOL_UNAVAILABLE, IssueTemplate(
        IssueCategory.DNS, IssueSeverity.ERROR,
        "{label}: 诊断工具不可用",
        "{message}",
        ("诊断工具未安装", "可执行文件没有执行权限"),
        ("安装所需工具（dnsutils / curl / traceroute）后重试",),
    )),
    (None, ProbeErrorKind.PARSE_ERROR, IssueTemplate(
        IssueCategory.DNS, IssueSeverity.ERROR,
        "{label}: 输出无法解析",
        "{message}",
        ("工具版本与预期输出格式不一致",),
        ("查看报告中的原始输出并确认工具版本",),
    )),
    (None, ProbeErrorKind.TIMEOUT, IssueTemplate(
        IssueCategory.DNS, IssueSeverity.ERROR,
        "{label}: 探测超时",
        "{message}",
        ("网络延迟过高", "中间设备丢弃探测报文"),
        ("稍后重试，或在网络状况稳定时重新诊断",),
    )),
    (None, None, IssueTemplate(
        IssueCategory.DNS, IssueSeverity.ERROR,
        "{label}: {kind}",
        "{message}",
        ("探测过程中发生意外错误",),
        ("查看日志了解详细错误信息",),
    )),
]


# ----------------------------------------------------------------------
# 其余规则模板
# ----------------------------------------------------------------------

# HTTP状态码（有序，第一条匹配的生效）
HTTP_STATUS_RULES: List[Tuple[Callable[[int], bool], int, IssueTemplate]] = [
    (lambda code: code >= 500, HTTP_SERVER_ERROR_DEDUCTION, IssueTemplate(
        IssueCategory.HTTP, IssueSeverity.ERROR,
        "服务器错误 (HTTP {code})",
        "服务器返回 HTTP {code}",
        ("后端应用异常", "网关/反向代理无法连接上游"),
        ("查看服务端错误日志", "检查反向代理到上游服务的连通性"),
    )),
    (lambda code: code >= 400, HTTP_CLIENT_ERROR_DEDUCTION, IssueTemplate(
        IssueCategory.HTTP, IssueSeverity.WARNING,
        "客户端错误 (HTTP {code})",
        "服务器返回 HTTP {code}",
        ("请求路径不存在", "需要认证或没有访问权限"),
        ("确认请求URL是否正确", "检查访问控制策略"),
    )),
]

BOTTLENECK_TEMPLATE = IssueTemplate(
    IssueCategory.ROUTING, IssueSeverity.WARNING,
    "路由瓶颈: 第 {hop} 跳",
    "第 {hop} 跳 ({ip}) 延迟 {rtt}ms",
    ("该节点链路拥塞", "跨运营商或跨国链路"),
    ("联系网络服务商排查该节点", "考虑使用CDN或更换线路绕开拥塞节点"),
)

UNRESPONSIVE_TEMPLATE = IssueTemplate(
    IssueCategory.ROUTING, IssueSeverity.INFO,
    "部分路由节点无响应",
    "{count}/{total} 个跳点没有响应 ({percent:.0f}%)",
    ("中间路由器禁用了ICMP回复", "探测报文被防火墙过滤"),
    ("无响应节点通常不影响业务，如同时存在连接问题再进一步排查",),
)

ROUTING_ERROR_TEMPLATE = IssueTemplate(
    IssueCategory.ROUTING, IssueSeverity.WARNING,
    "路由追踪失败: {kind}",
    "{message}",
    ("traceroute 不可用或被网络策略拦截",),
    ("确认已安装 traceroute，或在其他网络环境下重试",),
)

STABILITY_ERROR_TEMPLATE = IssueTemplate(
    IssueCategory.STABILITY, IssueSeverity.WARNING,
    "稳定性测试未完成: {kind}",
    "{message}",
    ("单次请求超时过多", "网络抖动"),
    ("稍后重试，或在网络状况稳定时重新诊断",),
)

STABILITY_POOR_TEMPLATE = IssueTemplate(
    IssueCategory.STABILITY, IssueSeverity.ERROR,
    "连接稳定性差",
    "成功率 {rate:.1f}% ({ok}/{total})",
    ("网络丢包严重", "服务端间歇性故障", "负载均衡后端部分节点异常"),
    ("检查负载均衡后端健康状态", "结合路由追踪排查丢包节点", "查看服务端错误日志"),
)

STABILITY_PARTIAL_TEMPLATE = IssueTemplate(
    IssueCategory.STABILITY, IssueSeverity.WARNING,
    "连接偶发失败",
    "成功率 {rate:.1f}% ({ok}/{total})",
    ("偶发网络丢包", "服务端偶发超时"),
    ("检查负载均衡后端健康状态", "持续观察是否周期性出现"),
)

JITTER_TEMPLATE = IssueTemplate(
    IssueCategory.STABILITY, IssueSeverity.WARNING,
    "响应时间抖动大",
    "相邻请求平均抖动 {jitter}ms（极差 {range}ms）",
    ("网络拥塞", "服务端负载波动"),
    ("排查高峰期带宽占用", "检查服务端资源使用是否有尖峰"),
)


class DiagnosticAnalyzer:
    """
    诊断结果分析器

    基于规则的纯函数分析：同样的输入总是得到同样的结论
    """

    def __init__(self, config: Optional[DiagnosticConfig] = None):
        """
        初始化分析器

        Args:
            config: 诊断配置（阈值、瓶颈和抖动参数）
        """
        self.config = config or DiagnosticConfig()

    def analyze(
        self,
        dns: Optional[ProbeOutcome],
        tcp: Optional[ProbeOutcome] = None,
        routing: Optional[ProbeOutcome] = None,
        stability: Optional[ProbeOutcome] = None
    ) -> AnalysisResult:
        """
        分析探测结局

        Args:
            dns: DNS探测结局
            tcp: 连接计时结局（门控失败时为None）
            routing: 路由追踪结局
            stability: 稳定性结局

        Returns:
            AnalysisResult: 健康分、等级、问题列表和建议
        """
        issues: List[Issue] = []
        deductions = 0
        hard_failure = False

        if self._check_dns(dns, issues):
            hard_failure = True
        if tcp is not None:
            failed, deducted = self._check_tcp(tcp, issues)
            hard_failure = hard_failure or failed
            deductions += deducted
        if routing is not None:
            deductions += self._check_routing(routing, issues)
        if stability is not None:
            failed, deducted = self._check_stability(stability, issues)
            hard_failure = hard_failure or failed
            deductions += deducted

        if hard_failure:
            score = 0
            overall_status = OverallStatus.FAILED
        else:
            score = max(0, 100 - deductions)
            overall_status = OverallStatus.from_score(score)

        result = AnalysisResult(
            score=score,
            overall_status=overall_status,
            issues=issues,
            recommendations=collect_recommendations(issues),
            hard_failure=hard_failure,
        )
        logger.info("[Analyzer] score=%d status=%s issues=%d",
                    score, overall_status.value, len(issues))
        return result

    def recommend_for_error(self, category: IssueCategory, error: ProbeError) -> Optional[str]:
        """错误步骤的首选建议"""
        template = match_probe_error(category, error.kind)
        return template.solutions[0] if template.solutions else None

    # ------------------------------------------------------------------
    # 各探测检查
    # ------------------------------------------------------------------

    def _check_dns(self, dns: Optional[ProbeOutcome], issues: List[Issue]) -> bool:
        """返回是否为门控失败"""
        if dns is None:
            issues.append(probe_error_issue(
                IssueCategory.DNS,
                ProbeError(ProbeErrorKind.INTERNAL_ERROR, "DNS探测没有执行"),
            ))
            return True

        if dns.error is not None:
            issues.append(probe_error_issue(IssueCategory.DNS, dns.error))
            return True

        if dns.result is None or not dns.result.resolved_ips:
            issues.append(probe_error_issue(
                IssueCategory.DNS,
                ProbeError(ProbeErrorKind.NETWORK_UNREACHABLE, "没有解析到任何地址"),
            ))
            return True

        self._check_metric("dns_lookup", dns.result.lookup_time_ms, issues)
        return False

    def _check_tcp(self, tcp: ProbeOutcome, issues: List[Issue]) -> Tuple[bool, int]:
        """返回 (是否不可达, 扣分)"""
        if tcp.error is not None:
            issues.append(probe_error_issue(IssueCategory.TCP, tcp.error))
            return True, 0

        result = tcp.result
        if result is None or not result.is_reachable:
            issues.append(probe_error_issue(
                IssueCategory.TCP,
                ProbeError(ProbeErrorKind.NETWORK_UNREACHABLE, "HTTP状态码为0，连接未建立"),
            ))
            return True, 0

        deductions = 0
        deductions += self._check_metric("tcp_connect", result.tcp_connect_ms, issues)
        deductions += self._check_metric("ssl_handshake", result.ssl_handshake_ms, issues)
        deductions += self._check_metric("ttfb", result.ttfb_ms, issues)
        deductions += self._check_metric("total", result.total_ms, issues)

        for matches, deduction, template in HTTP_STATUS_RULES:
            if matches(result.http_code):
                issues.append(template.build(code=result.http_code))
                deductions += deduction
                break

        return False, deductions

    def _check_routing(self, routing: ProbeOutcome, issues: List[Issue]) -> int:
        """路由问题只扣分，不会导致整体失败"""
        if routing.error is not None:
            issues.append(ROUTING_ERROR_TEMPLATE.build(
                kind=ERROR_KIND_LABELS[routing.error.kind],
                message=routing.error.message,
            ))
            return ROUTING_ERROR_DEDUCTION

        result = routing.result
        if result is None:
            return 0

        deductions = 0
        for hop in result.hops:
            if hop.is_bottleneck:
                issues.append(BOTTLENECK_TEMPLATE.build(hop=hop.hop_number, ip=hop.ip_address, rtt=hop.rtt_ms))
                deductions += BOTTLENECK_DEDUCTION
        deductions = min(deductions, BOTTLENECK_DEDUCTION_CAP)

        if result.total_hops:
            percent = result.unresponsive_hops / result.total_hops * 100
            if percent > self.config.routing.unresponsive_warn_percent:
                issues.append(UNRESPONSIVE_TEMPLATE.build(
                    count=result.unresponsive_hops, total=result.total_hops, percent=percent,
                ))

        return deductions

    def _check_stability(self, stability: ProbeOutcome, issues: List[Issue]) -> Tuple[bool, int]:
        """返回 (成功率是否为0, 扣分)"""
        deductions = 0
        error = stability.error
        result = stability.result

        if error is not None and error.kind != ProbeErrorKind.NETWORK_UNREACHABLE:
            issues.append(STABILITY_ERROR_TEMPLATE.build(
                kind=ERROR_KIND_LABELS[error.kind],
                message=error.message,
            ))
            deductions += STABILITY_ERROR_DEDUCTION

        if result is None:
            return False, deductions

        if result.success_rate == 0:
            issues.append(probe_error_issue(
                IssueCategory.STABILITY,
                error or ProbeError(ProbeErrorKind.NETWORK_UNREACHABLE,
                                    f"{result.total_tests} 次请求全部失败"),
            ))
            return True, deductions

        rate_values = dict(rate=result.success_rate, ok=result.successful_tests, total=result.total_tests)
        if result.success_rate < STABILITY_POOR_RATE:
            issues.append(STABILITY_POOR_TEMPLATE.build(**rate_values))
            deductions += STABILITY_POOR_DEDUCTION
        elif result.success_rate < 100:
            issues.append(STABILITY_PARTIAL_TEMPLATE.build(**rate_values))
            deductions += STABILITY_PARTIAL_DEDUCTION

        if result.mean_delta_jitter_ms > self.config.stability.jitter_threshold_ms:
            issues.append(JITTER_TEMPLATE.build(
                jitter=result.mean_delta_jitter_ms, range=result.range_jitter_ms,
            ))
            deductions += JITTER_DEDUCTION

        return False, deductions

    def _check_metric(self, metric: str, value: int, issues: List[Issue]) -> int:
        """按阈值区间生成问题，返回扣分"""
        threshold: MetricThreshold = getattr(self.config.thresholds, metric)
        severity = classify_band(value, threshold)
        if severity is None:
            return 0

        template = METRIC_TEMPLATES[(metric, severity)]
        issues.append(template.build(value=value, good=threshold.good, acceptable=threshold.acceptable))
        acceptable_deduction, slow_deduction = BAND_DEDUCTIONS[metric]
        return slow_deduction if severity == IssueSeverity.WARNING else acceptable_deduction


def classify_band(value: int, threshold: MetricThreshold) -> Optional[IssueSeverity]:
    """
    判断指标所在区间

    Returns:
        良好返回None，可接受返回INFO，慢返回WARNING
    """
    if value < threshold.good:
        return None
    if value < threshold.acceptable:
        return IssueSeverity.INFO
    return IssueSeverity.WARNING


def match_probe_error(category: IssueCategory, kind: ProbeErrorKind) -> IssueTemplate:
    """在错误规则表中查找第一条匹配的模板"""
    for rule_category, rule_kind, template in PROBE_ERROR_RULES:
        if rule_category not in (None, category):
            continue
        if rule_kind not in (None, kind):
            continue
        return template
    raise LookupError(f"没有匹配的错误规则: {category.value}/{kind.value}")


def probe_error_issue(category: IssueCategory, error: ProbeError) -> Issue:
    """把探测错误转换为 error 级别的问题"""
    template = match_probe_error(category, error.kind)
    issue = template.build(
        label=CATEGORY_LABELS[category],
        kind=ERROR_KIND_LABELS[error.kind],
        message=error.message,
    )
    issue.category = category
    return issue


def collect_recommendations(issues: List[Issue]) -> List[str]:
    """按问题出现顺序合并解决方案并去重"""
    recommendations: List[str] = []
    for issue in issues:
        for solution in issue.solutions:
            if solution not in recommendations:
                recommendations.append(solution)
    return recommendations
