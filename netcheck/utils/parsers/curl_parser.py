"""
curl输出解析器

解析连接计时（-w JSON格式）和单次请求状态码输出
"""
import json
from typing import List, Optional, Tuple

from ...models.results import CommandResult, TcpResult
from .base import ParseError, ensure_tool_available, parse_number, seconds_to_ms

# 与 ProbeExecutor 中 curl -w 参数保持一致
CURL_TIMING_FORMAT = (
    '{"dns": %{time_namelookup}, "connect": %{time_connect}, '
    '"ssl": %{time_appconnect}, "ttfb": %{time_starttransfer}, '
    '"total": %{time_total}, "http_code": "%{http_code}", '
    '"speed": %{speed_download}}'
)

_TIMER_KEYS = ("dns", "connect", "ssl", "ttfb", "total")

# (派生分段名, 起点计时器下标, 终点计时器下标)
_SEGMENTS = (
    ("tcp_connect_ms", 0, 1),
    ("ssl_handshake_ms", 1, 2),
    ("server_wait_ms", 2, 3),
    ("transfer_ms", 3, 4),
)


def derive_segments(timers: List[int]) -> Tuple[dict, List[str]]:
    """
    由累计计时器推导各阶段耗时

    负的差值截断为0并记录为异常，不抛出

    Args:
        timers: [dns, connect, ssl, ttfb, total] 累计毫秒

    Returns:
        (分段字典, 异常说明列表)
    """
    segments = {}
    anomalies = []
    for name, start, end in _SEGMENTS:
        delta = timers[end] - timers[start]
        if delta < 0:
            anomalies.append(
                f"{name} 计算结果为负 ({delta}ms: {_TIMER_KEYS[end]}={timers[end]}ms "
                f"< {_TIMER_KEYS[start]}={timers[start]}ms)，已截断为0"
            )
            delta = 0
        segments[name] = delta
    return segments, anomalies


def parse_curl_timing(result: CommandResult, scheme: str = "https") -> TcpResult:
    """
    解析curl连接计时输出

    Args:
        result: 命令执行结果
        scheme: 目标URL的scheme，http目标没有TLS阶段

    Returns:
        TcpResult: 累计计时器、派生分段、状态码和下载速度

    Raises:
        ToolUnavailableError: curl不存在
        ParseError: 输出不是预期的JSON

    示例输入:
        {"dns": 0.012, "connect": 0.045, "ssl": 0.120, "ttfb": 0.310,
         "total": 0.402, "http_code": "200", "speed": 53211.000}
    """
    ensure_tool_available(result)

    raw = result.stdout.strip()
    if not raw:
        raise ParseError("curl没有输出计时数据", result.stderr)

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ParseError(f"curl输出不是合法JSON: {e}", raw)
    if not isinstance(data, dict):
        raise ParseError("curl输出不是JSON对象", raw)

    missing = [key for key in _TIMER_KEYS + ("http_code",) if key not in data]
    if missing:
        raise ParseError(f"curl输出缺少字段: {', '.join(missing)}", raw)

    timers = [seconds_to_ms(parse_number(str(data[key]), raw)) for key in _TIMER_KEYS]

    # 纯HTTP请求时 time_appconnect 为0，TLS阶段视为零耗时
    if scheme == "http" and timers[2] == 0:
        timers[2] = timers[1]

    segments, anomalies = derive_segments(timers)
    speed = parse_number(str(data.get("speed", 0)), raw)

    return TcpResult(
        dns_ms=timers[0],
        connect_ms=timers[1],
        ssl_ms=timers[2],
        ttfb_ms=timers[3],
        total_ms=timers[4],
        http_code=int(parse_number(str(data["http_code"]), raw)),
        download_speed_kbps=round(speed / 1024.0, 2),
        anomalies=anomalies,
        **segments
    )


def parse_status_code(result: CommandResult) -> Optional[int]:
    """
    解析 `curl -w %{http_code}` 输出

    Returns:
        HTTP状态码；curl没有输出任何内容时为None

    Raises:
        ToolUnavailableError: curl不存在
        ParseError: 输出不是三位数字
    """
    ensure_tool_available(result)

    raw = result.stdout.strip()
    if not raw:
        return None
    if not (raw.isdigit() and len(raw) == 3):
        raise ParseError(f"无法识别的HTTP状态码: {raw!r}", result.stdout)
    return int(raw)


def is_success_code(http_code: Optional[int]) -> bool:
    """2xx/3xx视为成功"""
    return http_code is not None and 200 <= http_code < 400
