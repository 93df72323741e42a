"""
诊断报告数据模型
定义问题条目和最终输出的诊断报告结构
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .results import ProbeOutcome
from .task import DiagnosticStep


class IssueCategory(str, Enum):
    """问题类别"""
    DNS = "dns"
    TCP = "tcp"
    SSL = "ssl"
    HTTP = "http"
    ROUTING = "routing"
    STABILITY = "stability"


class IssueSeverity(str, Enum):
    """问题严重程度"""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class OverallStatus(str, Enum):
    """总体健康等级"""
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"
    FAILED = "failed"

    @classmethod
    def from_score(cls, score: int) -> "OverallStatus":
        """
        分数映射到等级

        90-100 excellent, 75-89 good, 50-74 acceptable, 25-49 poor, 0-24 failed
        """
        if score >= 90:
            return cls.EXCELLENT
        elif score >= 75:
            return cls.GOOD
        elif score >= 50:
            return cls.ACCEPTABLE
        elif score >= 25:
            return cls.POOR
        return cls.FAILED


class PipelineState(str, Enum):
    """诊断流水线状态"""
    IDLE = "idle"
    DNS_PHASE = "dns_phase"
    PARALLEL_PHASE = "parallel_phase"
    ANALYSIS_PHASE = "analysis_phase"
    DONE = "done"
    FAILED = "failed"


@dataclass
class Issue:
    """检测到的问题"""
    category: IssueCategory
    severity: IssueSeverity
    title: str
    description: str
    possible_causes: List[str] = field(default_factory=list)
    solutions: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"[{self.severity.value}] {self.category.value}: {self.title}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "possible_causes": list(self.possible_causes),
            "solutions": list(self.solutions),
        }


_STATUS_LABELS = {
    OverallStatus.EXCELLENT: "优秀",
    OverallStatus.GOOD: "良好",
    OverallStatus.ACCEPTABLE: "可接受",
    OverallStatus.POOR: "较差",
    OverallStatus.FAILED: "失败",
}


@dataclass
class DiagnosticReport:
    """
    网络诊断报告

    四个探测结局可以为空（DNS门控失败时后续探测不会运行）
    """
    run_id: str
    target_url: str
    dns: Optional[ProbeOutcome]
    tcp: Optional[ProbeOutcome]
    routing: Optional[ProbeOutcome]
    stability: Optional[ProbeOutcome]
    score: int
    overall_status: OverallStatus
    issues: List[Issue]
    recommendations: List[str]
    pipeline_state: PipelineState = PipelineState.DONE
    steps: List[DiagnosticStep] = field(default_factory=list)
    total_time_ms: int = 0
    output_dir: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        return (f"报告[{self.run_id}] {self.target_url}\n"
                f"等级: {self.overall_status.value} ({self.score}/100)\n"
                f"问题数: {len(self.issues)}\n"
                f"总耗时: {self.total_time_ms}ms")

    def get_status_label(self) -> str:
        """获取等级的中文描述"""
        return _STATUS_LABELS[self.overall_status]

    def to_markdown(self) -> str:
        """
        生成Markdown格式的报告

        Returns:
            完整的Markdown报告字符串
        """
        md = f"""# 网络诊断报告

**运行ID**: {self.run_id}
**目标**: {self.target_url}
**创建时间**: {self.created_at.strftime('%Y-%m-%d %H:%M:%S')}
**诊断耗时**: {self.total_time_ms}ms
**总体等级**: {self.overall_status.value} ({self.get_status_label()}) - {self.score}/100

---

"""
        md += self._dns_section()
        md += self._tcp_section()
        md += self._routing_section()
        md += self._stability_section()

        md += "## 发现的问题\n\n"
        if not self.issues:
            md += "未发现问题。\n\n"
        for i, issue in enumerate(self.issues, 1):
            md += f"### {i}. [{issue.severity.value}] {issue.title}\n\n"
            md += f"**类别**: {issue.category.value}\n\n"
            md += f"{issue.description}\n\n"
            if issue.possible_causes:
                md += "**可能原因**:\n"
                for cause in issue.possible_causes:
                    md += f"- {cause}\n"
                md += "\n"
            if issue.solutions:
                md += "**解决方案**:\n"
                for solution in issue.solutions:
                    md += f"- {solution}\n"
                md += "\n"

        md += "---\n\n## 建议\n\n"
        for i, recommendation in enumerate(self.recommendations, 1):
            md += f"{i}. {recommendation}\n"

        md += "\n---\n\n## 步骤记录\n\n"
        for step in self.steps:
            duration = f" ({step.duration_ms}ms)" if step.duration_ms is not None else ""
            md += f"- **{step.id.value}**: {step.status.value}{duration}"
            if step.result_text:
                md += f" - {step.result_text}"
            md += "\n"

        return md

    def _dns_section(self) -> str:
        md = "## DNS解析\n\n"
        if self.dns is None:
            return md + "未执行。\n\n"
        if self.dns.result is not None:
            dns = self.dns.result
            md += f"- 解析地址: {', '.join(dns.resolved_ips) or '无'}\n"
            md += f"- 解析耗时: {dns.lookup_time_ms}ms\n"
            md += f"- TTL: {dns.ttl if dns.ttl is not None else 'N/A'}\n"
            md += f"- 域名服务器: {', '.join(dns.nameservers) or 'N/A'}\n"
            md += f"- CDN/托管商: {dns.provider or '未识别'}\n"
        md += self._error_lines(self.dns)
        return md + "\n"

    def _tcp_section(self) -> str:
        md = "## 连接计时\n\n"
        if self.tcp is None:
            return md + "未执行。\n\n"
        if self.tcp.result is not None:
            tcp = self.tcp.result
            md += "| 阶段 | 耗时 |\n|---|---|\n"
            md += f"| DNS查询 | {tcp.dns_ms}ms |\n"
            md += f"| TCP连接 | {tcp.tcp_connect_ms}ms |\n"
            md += f"| SSL握手 | {tcp.ssl_handshake_ms}ms |\n"
            md += f"| 首字节(TTFB) | {tcp.ttfb_ms}ms |\n"
            md += f"| 总耗时 | {tcp.total_ms}ms |\n\n"
            md += f"- HTTP状态码: {tcp.http_code}\n"
            md += f"- 下载速度: {tcp.download_speed_kbps:.1f} KB/s\n"
        md += self._error_lines(self.tcp)
        return md + "\n"

    def _routing_section(self) -> str:
        md = "## 路由追踪\n\n"
        if self.routing is None:
            return md + "未执行。\n\n"
        if self.routing.result is not None:
            routing = self.routing.result
            md += f"共 {routing.total_hops} 跳，耗时 {routing.total_time_ms}ms\n\n"
            md += "| 跳 | 地址 | RTT | 瓶颈 |\n|---|---|---|---|\n"
            for hop in routing.hops:
                rtt = f"{hop.rtt_ms}ms" if hop.rtt_ms is not None else "*"
                bottleneck = "是" if hop.is_bottleneck else ""
                md += f"| {hop.hop_number} | {hop.ip_address or '*'} | {rtt} | {bottleneck} |\n"
            md += "\n"
        md += self._error_lines(self.routing)
        return md + "\n"

    def _stability_section(self) -> str:
        md = "## 连接稳定性\n\n"
        if self.stability is None:
            return md + "未执行。\n\n"
        if self.stability.result is not None:
            stability = self.stability.result
            md += f"- 成功率: {stability.success_rate:.1f}% "
            md += f"({stability.successful_tests}/{stability.total_tests})\n"
            md += (f"- 响应时间: min {stability.min_time_ms}ms / "
                   f"avg {stability.avg_time_ms}ms / max {stability.max_time_ms}ms\n")
            md += f"- 抖动(极差): {stability.range_jitter_ms}ms\n"
            md += f"- 抖动(相邻差均值): {stability.mean_delta_jitter_ms}ms\n"
        md += self._error_lines(self.stability)
        return md + "\n"

    @staticmethod
    def _error_lines(outcome: ProbeOutcome) -> str:
        md = ""
        if outcome.error is not None:
            md += f"- 错误: {outcome.error}\n"
            if outcome.error.raw_output:
                md += "\n**原始输出**:\n```\n"
                md += outcome.error.raw_output[:500]
                md += "\n```\n"
        for note in outcome.anomalies:
            md += f"- 异常: {note}\n"
        return md

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "run_id": self.run_id,
            "target_url": self.target_url,
            "timestamp": self.created_at.isoformat(),
            "dns": self.dns.to_dict() if self.dns else None,
            "tcp": self.tcp.to_dict() if self.tcp else None,
            "routing": self.routing.to_dict() if self.routing else None,
            "stability": self.stability.to_dict() if self.stability else None,
            "score": self.score,
            "overall_status": self.overall_status.value,
            "issues": [issue.to_dict() for issue in self.issues],
            "recommendations": list(self.recommendations),
            "pipeline_state": self.pipeline_state.value,
            "steps": [step.to_dict() for step in self.steps],
            "total_time_ms": self.total_time_ms,
            "output_dir": self.output_dir,
        }
