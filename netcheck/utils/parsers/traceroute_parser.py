"""
Traceroute输出解析器

解析traceroute输出，识别网络路径和瓶颈跳点
"""
import re
from dataclasses import replace
from typing import List, Optional

from ...models.results import CommandResult, RouteHop, RoutingResult
from .base import ParseError, ensure_tool_available, floor_ms, parse_number

# 格式: traceroute to example.com (93.184.216.34), 15 hops max, 60 byte packets
_TARGET_PATTERN = re.compile(r"traceroute to \S+ \(([\da-fA-F.:]+)\)")
# -n 格式:  1  192.168.1.1  1.234 ms
_NUMERIC_HOP_PATTERN = re.compile(r"^\s*(\d+)\s+([\da-fA-F.:]+)\s+([\d.]+)\s*ms")
# 主机名格式:  1  router.lan (192.168.1.1)  1.234 ms
_NAMED_HOP_PATTERN = re.compile(r"^\s*(\d+)\s+(\S+)\s+\(([\da-fA-F.:]+)\)\s+([\d.]+)\s*ms")
# 超时格式:  3  *  或  3  * * *
_TIMEOUT_PATTERN = re.compile(r"^\s*(\d+)(\s+\*)+\s*$")


def parse_traceroute_output(result: CommandResult, target_ip: str = "") -> RoutingResult:
    """
    解析traceroute输出

    Args:
        result: 命令执行结果
        target_ip: 目标IP（输出头部缺失时使用）

    Returns:
        RoutingResult: 按hop编号严格递增的跳点列表，瓶颈尚未标记

    Raises:
        ToolUnavailableError: traceroute不存在
        ParseError: 没有解析到任何跳点

    示例输入:
        traceroute to example.com (93.184.216.34), 15 hops max, 60 byte packets
         1  192.168.1.1  1.234 ms
         2  *
         3  10.10.1.1  12.871 ms

    解析逻辑:
        1. 提取目标IP
        2. 逐行解析每一跳，无响应的跳记录为 ip_address=None
        3. 丢弃编号不递增的重复行
    """
    ensure_tool_available(result)
    stdout = result.stdout

    target_match = _TARGET_PATTERN.search(stdout) or _TARGET_PATTERN.search(result.stderr)
    if target_match:
        target_ip = target_match.group(1)

    hops: List[RouteHop] = []
    for line in stdout.splitlines():
        hop = _parse_hop_line(line, stdout)
        if hop is None:
            continue
        if hops and hop.hop_number <= hops[-1].hop_number:
            continue
        hops.append(hop)

    if not hops:
        raise ParseError("traceroute输出中没有跳点数据", stdout or result.stderr)

    return RoutingResult(
        target_ip=target_ip,
        hops=hops,
        total_hops=len(hops),
        total_time_ms=result.elapsed_ms,
    )


def _parse_hop_line(line: str, raw_output: str) -> Optional[RouteHop]:
    """解析单行跳点，非跳点行返回None"""
    named_match = _NAMED_HOP_PATTERN.match(line)
    if named_match:
        return RouteHop(
            hop_number=int(named_match.group(1)),
            ip_address=named_match.group(3),
            hostname=named_match.group(2),
            rtt_ms=floor_ms(parse_number(named_match.group(4), raw_output)),
        )

    numeric_match = _NUMERIC_HOP_PATTERN.match(line)
    if numeric_match:
        return RouteHop(
            hop_number=int(numeric_match.group(1)),
            ip_address=numeric_match.group(2),
            rtt_ms=floor_ms(parse_number(numeric_match.group(3), raw_output)),
        )

    timeout_match = _TIMEOUT_PATTERN.match(line)
    if timeout_match:
        return RouteHop(
            hop_number=int(timeout_match.group(1)),
            ip_address=None,
            rtt_ms=None,
            packet_loss_percent=100.0,
        )

    return None


def mark_bottlenecks(
    routing: RoutingResult,
    delta_ms: int = 50,
    ceiling_ms: int = 150
) -> RoutingResult:
    """
    标记瓶颈跳点

    满足任一条件即为瓶颈：
        - RTT比上一个有响应的跳高出 delta_ms 以上
        - RTT绝对值超过 ceiling_ms

    Args:
        routing: 解析后的路由结果
        delta_ms: 相邻增量阈值
        ceiling_ms: 绝对值阈值

    Returns:
        新的RoutingResult，原对象不变
    """
    hops: List[RouteHop] = []
    bottlenecks: List[int] = []
    previous_rtt: Optional[int] = None

    for hop in routing.hops:
        if hop.rtt_ms is None:
            hops.append(replace(hop, is_bottleneck=False))
            continue

        jump = previous_rtt is not None and hop.rtt_ms - previous_rtt > delta_ms
        is_bottleneck = jump or hop.rtt_ms > ceiling_ms
        if is_bottleneck:
            bottlenecks.append(hop.hop_number)
        hops.append(replace(hop, is_bottleneck=is_bottleneck))
        previous_rtt = hop.rtt_ms

    return replace(routing, hops=hops, bottleneck_hops=bottlenecks)
