"""
探测执行引擎单元测试
"""
import asyncio
import json

import pytest

from netcheck.agent.executor import ProbeExecutor, StabilityCollector
from netcheck.integrations.capture_sink import DirectoryCaptureSink
from netcheck.integrations.config_loader import build_config
from netcheck.models.results import ProbeErrorKind, StabilitySample
from netcheck.models.task import DiagnosticRequest, StepStatus
from netcheck.utils.parsers import CURL_TIMING_FORMAT, ToolUnavailableError

REQUEST = DiagnosticRequest.from_target("example.com", run_id="run_test")


def _run(coro):
    return asyncio.run(coro)


class TestDnsProbe:
    """DNS探测测试"""

    def test_resolves_with_ttl_and_provider(self, fake_runner, make_result, fast_config):
        runner = fake_runner({
            "dns_ns": make_result("dig", "ns1.cloudflare.com.\nns2.cloudflare.com.\n"),
        })

        outcome = _run(ProbeExecutor(runner, fast_config).run_dns(REQUEST))

        assert outcome.status == StepStatus.SUCCESS
        assert outcome.error is None
        dns = outcome.result
        assert dns.resolved_ips == ["93.184.216.34"]
        assert dns.lookup_time_ms == 40
        assert dns.ttl == 3600
        assert dns.nameservers == ["ns1.cloudflare.com", "ns2.cloudflare.com"]
        assert dns.provider == "Cloudflare"

    def test_provider_from_cname_chain(self, fake_runner, make_result, fast_config):
        runner = fake_runner({
            "dns_a": make_result("dig", "www.example.com.cdn.cloudflare.net.\n104.16.123.96\n", elapsed_ms=30),
        })

        outcome = _run(ProbeExecutor(runner, fast_config).run_dns(REQUEST))

        assert outcome.result.cname_chain == ["www.example.com.cdn.cloudflare.net"]
        assert outcome.result.nameservers == ["a.iana-servers.net", "b.iana-servers.net"]
        assert outcome.result.provider == "Cloudflare"

    def test_slow_lookup_is_warning(self, fake_runner, make_result, fast_config):
        runner = fake_runner({"dns_a": make_result("dig", "93.184.216.34\n", elapsed_ms=150)})

        outcome = _run(ProbeExecutor(runner, fast_config).run_dns(REQUEST))

        assert outcome.status == StepStatus.WARNING
        assert outcome.error is None

    def test_no_addresses(self, fake_runner, make_result, fast_config):
        runner = fake_runner({"dns_a": make_result("dig", "", elapsed_ms=5000)})

        outcome = _run(ProbeExecutor(runner, fast_config).run_dns(REQUEST))

        assert outcome.status == StepStatus.ERROR
        assert outcome.error.kind == ProbeErrorKind.NETWORK_UNREACHABLE
        assert outcome.result.resolved_ips == []
        # 没有地址时不再查询TTL和NS
        assert runner.calls_for("dns_ttl") == []

    def test_timeout(self, fake_runner, make_result, fast_config):
        runner = fake_runner({"dns_a": make_result("dig", "", exit_code=-1, timed_out=True)})

        outcome = _run(ProbeExecutor(runner, fast_config).run_dns(REQUEST))

        assert outcome.error.kind == ProbeErrorKind.TIMEOUT

    def test_dig_missing(self, fake_runner, make_result, fast_config):
        runner = fake_runner({"dns_a": make_result("dig", "", stderr="sh: dig: not found", exit_code=127)})

        outcome = _run(ProbeExecutor(runner, fast_config).run_dns(REQUEST))

        assert outcome.status == StepStatus.ERROR
        assert outcome.error.kind == ProbeErrorKind.TOOL_UNAVAILABLE

    def test_secondary_query_failure_is_degradation(self, fake_runner, make_result, fast_config):
        runner = fake_runner({
            "dns_ttl": make_result("dig", "garbage\n"),
            "dns_ns": make_result("dig", "", exit_code=-1, timed_out=True),
        })

        outcome = _run(ProbeExecutor(runner, fast_config).run_dns(REQUEST))

        assert outcome.status == StepStatus.SUCCESS
        assert outcome.result.ttl is None
        assert outcome.result.nameservers == []
        assert len(outcome.anomalies) == 2
        assert all(note.startswith("partial_degradation") for note in outcome.anomalies)

    def test_command_arguments(self, fake_runner, fast_config):
        runner = fake_runner()

        _run(ProbeExecutor(runner, fast_config).run_dns(REQUEST))

        assert runner.calls_for("dns_a")[0][1] == ["+short", "example.com", "A"]
        assert runner.calls_for("dns_ttl")[0][1] == ["example.com", "+noall", "+answer"]
        assert runner.calls_for("dns_ns")[0][1] == ["example.com", "NS", "+short"]
        assert runner.calls_for("dns_a")[0][2] == 5


class TestConnectionTimingProbe:
    """连接计时探测测试"""

    def test_success(self, fake_runner, fast_config):
        runner = fake_runner()

        outcome = _run(ProbeExecutor(runner, fast_config).run_tcp(REQUEST))

        assert outcome.status == StepStatus.SUCCESS
        assert outcome.result.http_code == 200
        assert outcome.result.tcp_connect_ms == 48

        tool, args, _ = runner.calls_for("tcp_timing")[0]
        assert tool == "curl"
        assert args[:4] == ["-o", "/dev/null", "-s", "-L"]
        assert args[args.index("--connect-timeout") + 1] == "10"
        assert args[args.index("--max-time") + 1] == "30"
        assert args[args.index("-w") + 1] == CURL_TIMING_FORMAT
        assert args[-1] == "https://example.com"

    def test_timeout(self, fake_runner, make_result, fast_config):
        runner = fake_runner({"tcp_timing": make_result("curl", "", exit_code=-1, timed_out=True)})

        outcome = _run(ProbeExecutor(runner, fast_config).run_tcp(REQUEST))

        assert outcome.status == StepStatus.ERROR
        assert outcome.error.kind == ProbeErrorKind.TIMEOUT

    def test_curl_max_time_exceeded(self, fake_runner, make_result, fast_config):
        stdout = json.dumps({"dns": 0.01, "connect": 0.02, "ssl": 0.0, "ttfb": 0.0,
                             "total": 30.0, "http_code": "000", "speed": 0})
        runner = fake_runner({"tcp_timing": make_result("curl", stdout, exit_code=28)})

        outcome = _run(ProbeExecutor(runner, fast_config).run_tcp(REQUEST))

        assert outcome.error.kind == ProbeErrorKind.TIMEOUT

    def test_unreachable(self, fake_runner, make_result, fast_config):
        stdout = json.dumps({"dns": 0.01, "connect": 0, "ssl": 0, "ttfb": 0,
                             "total": 0.02, "http_code": "000", "speed": 0})
        runner = fake_runner({"tcp_timing": make_result("curl", stdout, exit_code=7,
                                                        stderr="curl: (7) Failed to connect")})

        outcome = _run(ProbeExecutor(runner, fast_config).run_tcp(REQUEST))

        assert outcome.error.kind == ProbeErrorKind.NETWORK_UNREACHABLE
        assert outcome.result.http_code == 0

    @pytest.mark.parametrize("http_code,exit_code,stderr", [
        ("301", 47, "curl: (47) Maximum (50) redirects followed"),
        ("200", 56, "curl: (56) Recv failure: Connection reset by peer"),
        ("200", 18, "curl: (18) transfer closed with bytes remaining to read"),
    ])
    def test_curl_failure_with_status_code(self, fake_runner, make_result, fast_config,
                                           http_code, exit_code, stderr):
        """curl 非零退出即使输出了状态码也视为请求失败"""
        stdout = json.dumps({"dns": 0.01, "connect": 0.02, "ssl": 0.05, "ttfb": 0.1,
                             "total": 0.12, "http_code": http_code, "speed": 100})
        runner = fake_runner({"tcp_timing": make_result("curl", stdout, exit_code=exit_code, stderr=stderr)})

        outcome = _run(ProbeExecutor(runner, fast_config).run_tcp(REQUEST))

        assert outcome.status == StepStatus.ERROR
        assert outcome.error.kind == ProbeErrorKind.NETWORK_UNREACHABLE
        assert f"exit={exit_code}" in outcome.error.message
        assert stderr in outcome.error.raw_output
        assert outcome.result.http_code == int(http_code)

    def test_parse_error_keeps_raw_output(self, fake_runner, make_result, fast_config):
        runner = fake_runner({"tcp_timing": make_result("curl", "<html>proxy error</html>")})

        outcome = _run(ProbeExecutor(runner, fast_config).run_tcp(REQUEST))

        assert outcome.error.kind == ProbeErrorKind.PARSE_ERROR
        assert outcome.error.raw_output == "<html>proxy error</html>"

    def test_client_error_is_warning(self, fake_runner, make_result, fast_config):
        stdout = json.dumps({"dns": 0.01, "connect": 0.02, "ssl": 0.05, "ttfb": 0.1,
                             "total": 0.12, "http_code": "404", "speed": 100})
        runner = fake_runner({"tcp_timing": make_result("curl", stdout)})

        outcome = _run(ProbeExecutor(runner, fast_config).run_tcp(REQUEST))

        assert outcome.status == StepStatus.WARNING
        assert outcome.error is None


class TestRoutingProbe:
    """路由追踪探测测试"""

    def test_command_and_result(self, fake_runner, fast_config):
        runner = fake_runner()

        outcome = _run(ProbeExecutor(runner, fast_config).run_routing(REQUEST, "93.184.216.34"))

        assert outcome.status == StepStatus.SUCCESS
        assert outcome.result.total_hops == 8
        assert outcome.result.bottleneck_hops == []
        assert runner.calls_for("traceroute")[0][1] == ["-n", "-m", "15", "-w", "1", "-q", "1", "example.com"]

    def test_bottleneck_is_warning(self, fake_runner, make_result, fast_config):
        stdout = "\n".join(f" {hop}  10.0.{hop}.1  {rtt} ms"
                           for hop, rtt in enumerate([1, 3, 8, 12, 20, 40, 180], 1))
        runner = fake_runner({"traceroute": make_result("traceroute", stdout)})

        outcome = _run(ProbeExecutor(runner, fast_config).run_routing(REQUEST, "93.184.216.34"))

        assert outcome.status == StepStatus.WARNING
        assert outcome.result.bottleneck_hops == [7]
        assert outcome.result.hops[6].is_bottleneck is True

    def test_unresponsive_hops_noted(self, fake_runner, make_result, fast_config):
        stdout = " 1  10.0.1.1  1.0 ms\n 2  *\n 3  10.0.3.1  3.0 ms\n"
        runner = fake_runner({"traceroute": make_result("traceroute", stdout)})

        outcome = _run(ProbeExecutor(runner, fast_config).run_routing(REQUEST, "93.184.216.34"))

        # 1/3 无响应超过30%
        assert outcome.status == StepStatus.WARNING
        assert outcome.anomalies and outcome.anomalies[0].startswith("partial_degradation")

    def test_tool_unavailable_from_runner(self, fake_runner, fast_config):
        runner = fake_runner({"traceroute": ToolUnavailableError("traceroute")})

        outcome = _run(ProbeExecutor(runner, fast_config).run_routing(REQUEST, "93.184.216.34"))

        assert outcome.status == StepStatus.ERROR
        assert outcome.error.kind == ProbeErrorKind.TOOL_UNAVAILABLE


class TestStabilityProbe:
    """稳定性探测测试"""

    def test_all_success(self, fake_runner, fast_config):
        runner = fake_runner()

        outcome = _run(ProbeExecutor(runner, fast_config).run_stability(REQUEST))

        assert outcome.status == StepStatus.SUCCESS
        assert outcome.result.total_tests == 10
        assert outcome.result.success_rate == 100.0
        assert outcome.result.avg_time_ms == 50
        args = runner.calls_for("stability_request")[0][1]
        assert args[args.index("-w") + 1] == "%{http_code}"
        assert args[args.index("--connect-timeout") + 1] == "3"
        assert args[args.index("--max-time") + 1] == "5"

    def test_one_failure_is_warning(self, fake_runner, make_result, fast_config):
        ok = make_result("curl", "200", elapsed_ms=50)
        failed = make_result("curl", "", exit_code=28, elapsed_ms=5000)
        runner = fake_runner({"stability_request": [ok, ok, ok, failed, ok]})

        outcome = _run(ProbeExecutor(runner, fast_config).run_stability(REQUEST))

        assert outcome.status == StepStatus.WARNING
        assert outcome.result.successful_tests == 9
        assert outcome.result.success_rate == 90.0
        assert outcome.result.samples[3].error == "超时"

    def test_low_rate_is_error_without_marker(self, fake_runner, make_result, fast_config):
        ok = make_result("curl", "200", elapsed_ms=50)
        failed = make_result("curl", "503", elapsed_ms=30)
        runner = fake_runner({"stability_request": [ok, failed] * 5})

        outcome = _run(ProbeExecutor(runner, fast_config).run_stability(REQUEST))

        assert outcome.status == StepStatus.ERROR
        assert outcome.error is None
        assert outcome.result.success_rate == 50.0
        assert outcome.result.samples[1].error == "HTTP 503"

    def test_curl_failure_counts_as_failed_sample(self, fake_runner, make_result, fast_config):
        ok = make_result("curl", "200", elapsed_ms=50)
        broken = make_result("curl", "200", exit_code=56, elapsed_ms=40)
        runner = fake_runner({"stability_request": [ok, broken, ok]})

        outcome = _run(ProbeExecutor(runner, fast_config).run_stability(REQUEST))

        assert outcome.result.successful_tests == 9
        assert outcome.result.samples[1].success is False
        assert outcome.result.samples[1].http_code == 200
        assert outcome.result.samples[1].error == "curl exit=56"
        assert outcome.status == StepStatus.WARNING

    def test_all_failed(self, fake_runner, make_result, fast_config):
        runner = fake_runner({"stability_request": make_result("curl", "000", exit_code=7)})

        outcome = _run(ProbeExecutor(runner, fast_config).run_stability(REQUEST))

        assert outcome.error.kind == ProbeErrorKind.NETWORK_UNREACHABLE
        assert outcome.result.success_rate == 0

    def test_overall_timeout_keeps_collected_samples(self, fake_runner):
        config = build_config({"timeouts": {"stability": 0.5}, "stability": {"interval_ms": 0}})
        runner = fake_runner(delays={"stability_request": 0.2})

        outcome = _run(ProbeExecutor(runner, config).run_stability(REQUEST))

        assert outcome.status == StepStatus.ERROR
        assert outcome.error.kind == ProbeErrorKind.TIMEOUT
        assert outcome.result is not None
        assert 1 <= outcome.result.total_tests < 10


class TestStabilityCollector:
    """采样收集器测试"""

    def test_capacity(self):
        collector = StabilityCollector(2)
        collector.add(StabilitySample(1, True, 10))
        collector.add(StabilitySample(2, True, 12))

        assert collector.full is True
        with pytest.raises(OverflowError):
            collector.add(StabilitySample(3, True, 11))


class TestRawCapture:
    """原始输出采集测试"""

    def test_probe_outputs_written(self, fake_runner, fast_config, tmp_path):
        sink = DirectoryCaptureSink(tmp_path, REQUEST.run_id)
        executor = ProbeExecutor(fake_runner(), fast_config, sink)

        async def scenario():
            await executor.run_dns(REQUEST)
            await executor.run_tcp(REQUEST)
            await executor.run_routing(REQUEST, "93.184.216.34")
            await executor.run_stability(REQUEST)

        _run(scenario())

        run_dir = tmp_path / REQUEST.run_id
        names = sorted(path.name for path in run_dir.iterdir())
        assert names == [
            "01_dns_a_records.txt",
            "01_dns_answer.txt",
            "01_dns_nameservers.txt",
            "02_tcp_timing.json",
            "03_traceroute.txt",
            "04_stability_samples.txt",
        ]
        assert (run_dir / "01_dns_a_records.txt").read_text(encoding="utf-8") == "93.184.216.34\n"
        samples = (run_dir / "04_stability_samples.txt").read_text(encoding="utf-8").splitlines()
        assert samples[0] == "attempt,success,http_code,elapsed_ms,error"
        assert len(samples) == 11
