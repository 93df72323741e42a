"""
解析器基类和通用工具

定义所有解析器共用的异常和数值处理函数
"""
import math

from ...models.results import CommandResult

# shell约定：126 不可执行，127 命令不存在
_TOOL_MISSING_EXIT_CODES = (126, 127)
_TOOL_MISSING_SIGNATURES = ("command not found", "not found", "no such file or directory")


class ParseError(Exception):
    """解析错误异常"""
    def __init__(self, message: str, raw_output: str = ""):
        super().__init__(message)
        self.raw_output = raw_output


class ToolUnavailableError(Exception):
    """诊断工具不存在或不可执行"""
    def __init__(self, tool: str, message: str = ""):
        super().__init__(message or f"工具不可用: {tool}")
        self.tool = tool


def floor_ms(value: float) -> int:
    """毫秒值向下取整"""
    return int(math.floor(value))


def seconds_to_ms(value: float) -> int:
    """秒转换为毫秒并向下取整（先消除二进制浮点误差，0.029s → 29ms）"""
    return floor_ms(round(value * 1000.0, 6))


def parse_number(text: str, raw_output: str = "") -> float:
    """
    与区域设置无关的数值解析

    Raises:
        ParseError: 文本不是合法数字
    """
    try:
        return float(text.strip())
    except (TypeError, ValueError):
        raise ParseError(f"无法解析数值: {text!r}", raw_output)


def ensure_tool_available(result: CommandResult) -> None:
    """
    检查命令结果是否表示工具缺失

    Raises:
        ToolUnavailableError: 退出码或stderr显示工具不存在
    """
    if result.timed_out:
        return
    stderr = result.stderr.lower()
    if result.exit_code in _TOOL_MISSING_EXIT_CODES:
        raise ToolUnavailableError(result.tool, result.stderr.strip() or f"{result.tool} 无法执行")
    if result.exit_code != 0 and not result.stdout.strip() and result.tool in stderr and any(
        signature in stderr for signature in _TOOL_MISSING_SIGNATURES
    ):
        raise ToolUnavailableError(result.tool, result.stderr.strip())
