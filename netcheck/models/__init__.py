"""
数据模型包
提供所有核心数据结构的导入
"""
from .report import (
    DiagnosticReport,
    Issue,
    IssueCategory,
    IssueSeverity,
    OverallStatus,
    PipelineState,
)
from .results import (
    CommandResult,
    DnsResult,
    ProbeError,
    ProbeErrorKind,
    ProbeOutcome,
    RouteHop,
    RoutingResult,
    StabilityResult,
    StabilitySample,
    TcpResult,
)
from .task import (
    DiagnosticRequest,
    DiagnosticStep,
    StepId,
    StepStatus,
    StepTransitionError,
    generate_run_id,
    normalize_target,
)

__all__ = [
    # 枚举类型
    "StepId",
    "StepStatus",
    "ProbeErrorKind",
    "IssueCategory",
    "IssueSeverity",
    "OverallStatus",
    "PipelineState",
    # 任务相关
    "DiagnosticRequest",
    "DiagnosticStep",
    "StepTransitionError",
    "generate_run_id",
    "normalize_target",
    # 结果相关
    "CommandResult",
    "ProbeError",
    "ProbeOutcome",
    "DnsResult",
    "TcpResult",
    "RouteHop",
    "RoutingResult",
    "StabilitySample",
    "StabilityResult",
    # 报告相关
    "Issue",
    "DiagnosticReport",
]
