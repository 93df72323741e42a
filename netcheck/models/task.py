"""
任务相关数据模型
定义诊断请求和诊断步骤的核心数据结构
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlparse


class StepId(str, Enum):
    """诊断步骤枚举"""
    DNS = "dns"
    TCP = "tcp"
    SSL = "ssl"
    HTTP = "http"
    ROUTING = "routing"
    STABILITY = "stability"


class StepStatus(str, Enum):
    """步骤状态枚举（封闭集合）"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({StepStatus.SUCCESS, StepStatus.WARNING, StepStatus.ERROR})

# 状态机允许的转换：pending → running → 终态
_ALLOWED_TRANSITIONS = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING}),
    StepStatus.RUNNING: TERMINAL_STATUSES,
    StepStatus.SUCCESS: frozenset(),
    StepStatus.WARNING: frozenset(),
    StepStatus.ERROR: frozenset(),
}


class StepTransitionError(Exception):
    """非法的步骤状态转换"""
    def __init__(self, step_id: StepId, current: StepStatus, requested: StepStatus):
        super().__init__(
            f"步骤 {step_id.value} 不能从 {current.value} 转换到 {requested.value}"
        )
        self.step_id = step_id
        self.current = current
        self.requested = requested


def generate_run_id() -> str:
    """生成运行ID（时间戳 + 短UUID，保证并发运行互不冲突）"""
    timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
    short_uuid = str(uuid.uuid4())[:8]
    return f"run_{timestamp}_{short_uuid}"


def normalize_target(target: str) -> str:
    """
    规范化目标地址

    没有scheme时默认补全为 https://，scheme统一转为小写

    Args:
        target: 域名或URL

    Returns:
        完整URL

    Raises:
        ValueError: 目标为空或无法提取主机名
    """
    target = (target or "").strip()
    if not target:
        raise ValueError("目标地址不能为空")

    scheme, separator, rest = target.partition("://")
    if separator and scheme.lower() in ("http", "https"):
        target = f"{scheme.lower()}://{rest}"
    else:
        target = f"https://{target}"

    if not urlparse(target).hostname:
        raise ValueError(f"无法从URL中提取域名: {target}")

    return target


@dataclass(frozen=True)
class DiagnosticRequest:
    """
    诊断请求

    每次运行创建一次，创建后不可修改
    """
    target_url: str                      # 规范化后的URL
    domain: str                          # 主机名
    scheme: str                          # http | https
    run_id: str                          # 运行ID
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_target(cls, target: str, run_id: Optional[str] = None) -> "DiagnosticRequest":
        """从用户输入的域名或URL创建请求"""
        url = normalize_target(target)
        parsed = urlparse(url)
        return cls(
            target_url=url,
            domain=parsed.hostname,
            scheme=parsed.scheme,
            run_id=run_id or generate_run_id(),
        )

    def __str__(self) -> str:
        return f"[{self.run_id}] {self.target_url}"

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "target_url": self.target_url,
            "domain": self.domain,
            "scheme": self.scheme,
            "run_id": self.run_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class DiagnosticStep:
    """
    诊断步骤

    状态只能单调推进，不允许回退
    """
    id: StepId
    status: StepStatus = StepStatus.PENDING
    result_text: Optional[str] = None
    duration_ms: Optional[int] = None
    recommendation: Optional[str] = None

    def transition(self, status: StepStatus, result_text: Optional[str] = None,
                   duration_ms: Optional[int] = None,
                   recommendation: Optional[str] = None) -> None:
        """
        推进步骤状态

        Raises:
            StepTransitionError: 请求的转换违反 pending → running → 终态
        """
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise StepTransitionError(self.id, self.status, status)

        self.status = status
        if result_text is not None:
            self.result_text = result_text
        if duration_ms is not None:
            self.duration_ms = duration_ms
        if recommendation is not None:
            self.recommendation = recommendation

    def __str__(self) -> str:
        return f"{self.id.value}: {self.status.value}"

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "id": self.id.value,
            "status": self.status.value,
            "result_text": self.result_text,
            "duration_ms": self.duration_ms,
            "recommendation": self.recommendation,
        }
