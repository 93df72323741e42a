"""
稳定性采样汇总

把多次请求的采样汇总为成功率、响应时间统计和抖动
"""
from typing import List, Sequence

from ...models.results import StabilityResult, StabilitySample
from .base import floor_ms


def range_jitter(times: Sequence[int]) -> int:
    """抖动定义一：极差 (max - min)"""
    if len(times) < 2:
        return 0
    return max(times) - min(times)


def mean_delta_jitter(times: Sequence[int]) -> int:
    """抖动定义二：相邻采样差值绝对值的均值"""
    if len(times) < 2:
        return 0
    deltas = [abs(current - previous) for previous, current in zip(times, times[1:])]
    return floor_ms(sum(deltas) / len(deltas))


def summarize_samples(samples: Sequence[StabilitySample]) -> StabilityResult:
    """
    汇总稳定性采样

    Args:
        samples: 按尝试顺序排列的采样

    Returns:
        StabilityResult: min/avg/max和抖动只统计成功的采样

    示例:
        10次请求中9次成功 → success_rate = 90.0
    """
    total = len(samples)
    times: List[int] = [sample.elapsed_ms for sample in samples if sample.success]
    successful = len(times)

    success_rate = successful / total * 100 if total else 0.0

    if times:
        min_time = min(times)
        max_time = max(times)
        avg_time = floor_ms(sum(times) / successful)
    else:
        min_time = avg_time = max_time = 0

    return StabilityResult(
        total_tests=total,
        successful_tests=successful,
        success_rate=success_rate,
        min_time_ms=min_time,
        avg_time_ms=avg_time,
        max_time_ms=max_time,
        range_jitter_ms=range_jitter(times),
        mean_delta_jitter_ms=mean_delta_jitter(times),
        samples=list(samples),
    )
