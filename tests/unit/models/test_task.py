"""
任务和报告模型单元测试
"""
import re

import pytest

from netcheck.models.report import OverallStatus
from netcheck.models.task import (
    DiagnosticRequest,
    DiagnosticStep,
    StepId,
    StepStatus,
    StepTransitionError,
    generate_run_id,
    normalize_target,
)


class TestNormalizeTarget:
    """目标地址规范化测试"""

    @pytest.mark.parametrize("target,expected", [
        ("example.com", "https://example.com"),
        ("  example.com  ", "https://example.com"),
        ("http://example.com", "http://example.com"),
        ("https://example.com/path?q=1", "https://example.com/path?q=1"),
        ("HTTPS://example.com", "https://example.com"),
        ("Http://example.com/a", "http://example.com/a"),
        ("example.com/go?to=http://other.com", "https://example.com/go?to=http://other.com"),
    ])
    def test_normalize(self, target, expected):
        assert normalize_target(target) == expected

    @pytest.mark.parametrize("target", ["", "   ", "http://", "https:///path"])
    def test_invalid_target(self, target):
        with pytest.raises(ValueError):
            normalize_target(target)


class TestDiagnosticRequest:
    """诊断请求测试"""

    def test_from_domain(self):
        request = DiagnosticRequest.from_target("Example.com:8443/health")

        assert request.target_url == "https://Example.com:8443/health"
        assert request.domain == "example.com"
        assert request.scheme == "https"
        assert request.run_id.startswith("run_")

    def test_upper_case_scheme(self):
        request = DiagnosticRequest.from_target("HTTP://Example.com/status")

        assert request.domain == "example.com"
        assert request.scheme == "http"
        assert request.target_url == "http://Example.com/status"

    def test_explicit_run_id(self):
        request = DiagnosticRequest.from_target("http://example.com", run_id="run_test")

        assert request.run_id == "run_test"
        assert request.scheme == "http"

    def test_run_ids_unique(self):
        run_ids = {generate_run_id() for _ in range(50)}

        assert len(run_ids) == 50
        assert all(re.match(r"^run_\d{14}_[0-9a-f]{8}$", run_id) for run_id in run_ids)


class TestDiagnosticStep:
    """步骤状态机测试"""

    def test_monotonic_transitions(self):
        step = DiagnosticStep(StepId.DNS)

        step.transition(StepStatus.RUNNING)
        step.transition(StepStatus.SUCCESS, result_text="ok", duration_ms=40)

        assert step.status == StepStatus.SUCCESS
        assert step.result_text == "ok"
        assert step.duration_ms == 40

    def test_cannot_skip_running(self):
        step = DiagnosticStep(StepId.TCP)

        with pytest.raises(StepTransitionError):
            step.transition(StepStatus.SUCCESS)

    @pytest.mark.parametrize("terminal", [StepStatus.SUCCESS, StepStatus.WARNING, StepStatus.ERROR])
    def test_terminal_is_final(self, terminal):
        step = DiagnosticStep(StepId.ROUTING)
        step.transition(StepStatus.RUNNING)
        step.transition(terminal)

        with pytest.raises(StepTransitionError):
            step.transition(StepStatus.RUNNING)
        with pytest.raises(StepTransitionError):
            step.transition(StepStatus.PENDING)
        assert step.status == terminal

    def test_to_dict(self):
        step = DiagnosticStep(StepId.HTTP)

        assert step.to_dict() == {
            "id": "http",
            "status": "pending",
            "result_text": None,
            "duration_ms": None,
            "recommendation": None,
        }


class TestOverallStatus:
    """健康分等级测试"""

    @pytest.mark.parametrize("score,expected", [
        (100, OverallStatus.EXCELLENT),
        (92, OverallStatus.EXCELLENT),
        (90, OverallStatus.EXCELLENT),
        (89, OverallStatus.GOOD),
        (75, OverallStatus.GOOD),
        (74, OverallStatus.ACCEPTABLE),
        (60, OverallStatus.ACCEPTABLE),
        (50, OverallStatus.ACCEPTABLE),
        (49, OverallStatus.POOR),
        (25, OverallStatus.POOR),
        (24, OverallStatus.FAILED),
        (10, OverallStatus.FAILED),
        (0, OverallStatus.FAILED),
    ])
    def test_score_bands(self, score, expected):
        assert OverallStatus.from_score(score) == expected
