"""
Pytest配置和全局fixtures
"""
import asyncio
import json
import sys
from pathlib import Path

import pytest

# 添加项目根目录到Python路径，以便导入模块
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from netcheck.integrations.config_loader import build_config  # noqa: E402
from netcheck.models.results import CommandResult  # noqa: E402


def make_result(tool, stdout="", stderr="", exit_code=0, elapsed_ms=10, timed_out=False, args=None):
    """构造工具执行结果"""
    return CommandResult(
        tool=tool,
        args=list(args or []),
        stdout=stdout,
        stderr=stderr,
        exit_code=exit_code,
        elapsed_ms=elapsed_ms,
        timed_out=timed_out,
    )


def probe_key(tool, args):
    """根据工具和参数识别是哪一类调用"""
    if tool == "dig":
        if "+answer" in args:
            return "dns_ttl"
        if "NS" in args:
            return "dns_ns"
        return "dns_a"
    if tool == "curl":
        return "tcp_timing" if "-L" in args else "stability_request"
    return tool


class FakeProbeRunner:
    """
    脚本化的探测工具执行器

    responses 的值可以是：
    - CommandResult：每次调用都返回它
    - list：按顺序返回，用完后重复最后一个
    - Exception 实例：调用时抛出
    """

    def __init__(self, responses, delays=None):
        self.responses = dict(responses)
        self.delays = dict(delays or {})
        self.calls = []
        self._counters = {}

    def calls_for(self, key):
        return [call for call in self.calls if probe_key(call[0], call[1]) == key]

    async def invoke(self, tool, args, timeout=30):
        key = probe_key(tool, args)
        self.calls.append((tool, list(args), timeout))

        if key in self.delays:
            await asyncio.sleep(self.delays[key])

        response = self.responses[key]
        if isinstance(response, list):
            index = self._counters.get(key, 0)
            self._counters[key] = index + 1
            response = response[min(index, len(response) - 1)]
        if isinstance(response, Exception):
            raise response
        return response


def healthy_responses():
    """全部指标良好的目标（example.com）"""
    timing = {
        "dns": 0.0125, "connect": 0.0605, "ssl": 0.1505,
        "ttfb": 0.3005, "total": 0.4005, "http_code": 200, "speed": 51200.0,
    }
    traceroute = "traceroute to example.com (93.184.216.34), 15 hops max, 60 byte packets\n"
    for hop, rtt in enumerate([1.2, 5.3, 10.1, 12.4, 15.8, 20.2, 25.6, 30.9], 1):
        address = "93.184.216.34" if hop == 8 else f"10.0.{hop}.1"
        traceroute += f" {hop}  {address}  {rtt} ms\n"

    return {
        "dns_a": make_result("dig", "93.184.216.34\n", elapsed_ms=40),
        "dns_ttl": make_result("dig", "example.com.\t\t3600\tIN\tA\t93.184.216.34\n"),
        "dns_ns": make_result("dig", "a.iana-servers.net.\nb.iana-servers.net.\n"),
        "tcp_timing": make_result("curl", json.dumps(timing), elapsed_ms=401),
        "traceroute": make_result("traceroute", traceroute, elapsed_ms=2100),
        "stability_request": make_result("curl", "200", elapsed_ms=50),
    }


@pytest.fixture
def fast_config():
    """采样间隔为0的配置，避免测试等待"""
    return build_config({"stability": {"interval_ms": 0}})


@pytest.fixture
def fake_runner():
    """创建脚本化执行器：fake_runner(覆盖项, delays=...)"""
    def factory(overrides=None, delays=None):
        responses = healthy_responses()
        responses.update(overrides or {})
        return FakeProbeRunner(responses, delays)
    return factory


@pytest.fixture(name="make_result")
def make_result_fixture():
    """构造工具执行结果的函数"""
    return make_result
