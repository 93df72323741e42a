"""
诊断核心模块

提供探测执行、结果分析、流水线编排、进度事件和报告生成功能
"""
from .analyzer import AnalysisResult, DiagnosticAnalyzer
from .events import EventEmitter, EventSubscription, ProgressEvent
from .executor import ProbeExecutor, StabilityCollector
from .orchestrator import STEP_ORDER, DiagnosticPipeline
from .reporter import ReportGenerator

__all__ = [
    "ProbeExecutor",
    "StabilityCollector",
    "DiagnosticAnalyzer",
    "AnalysisResult",
    "DiagnosticPipeline",
    "STEP_ORDER",
    "EventEmitter",
    "EventSubscription",
    "ProgressEvent",
    "ReportGenerator",
]
