"""
DNS解析器单元测试
"""
import pytest

from netcheck.models.results import CommandResult
from netcheck.utils.parsers import ParseError, ToolUnavailableError
from netcheck.utils.parsers.dns_parser import (
    detect_provider,
    parse_a_records,
    parse_nameservers,
    parse_ttl,
)


def _dig(stdout, exit_code=0, stderr=""):
    return CommandResult(
        tool="dig",
        args=["+short", "example.com", "A"],
        stdout=stdout,
        stderr=stderr,
        exit_code=exit_code,
        elapsed_ms=35,
    )


class TestParseARecords:
    """A记录解析测试"""

    def test_multiple_ips_keep_order(self):
        """测试多个IP保持返回顺序"""
        ips, cnames = parse_a_records(_dig("104.16.124.96\n104.16.123.96\n104.16.124.96\n"))

        assert ips == ["104.16.124.96", "104.16.123.96", "104.16.124.96"]
        assert cnames == []

    def test_cname_chain(self):
        """测试CNAME记录与IP分开"""
        ips, cnames = parse_a_records(_dig("www.example.com.cdn.cloudflare.net.\n104.16.123.96\n"))

        assert ips == ["104.16.123.96"]
        assert cnames == ["www.example.com.cdn.cloudflare.net"]

    def test_empty_output(self):
        """测试没有解析结果"""
        ips, cnames = parse_a_records(_dig(""))

        assert ips == []
        assert cnames == []

    def test_dig_timeout_comment(self):
        """测试dig的超时注释行被忽略"""
        ips, _ = parse_a_records(_dig(";; connection timed out; no servers could be reached\n", exit_code=9))

        assert ips == []

    def test_unexpected_line(self):
        """测试无法识别的输出保留原始内容"""
        with pytest.raises(ParseError) as exc_info:
            parse_a_records(_dig("this is not dig output!\n"))

        assert exc_info.value.raw_output == "this is not dig output!\n"

    def test_dig_missing(self):
        """测试dig未安装"""
        with pytest.raises(ToolUnavailableError):
            parse_a_records(_dig("", exit_code=127, stderr="sh: dig: not found"))


class TestParseTtlAndNameservers:
    """TTL和NS记录解析测试"""

    def test_ttl_from_first_answer(self):
        """测试取第一条应答记录的TTL"""
        stdout = "example.com.\t\t3600\tIN\tA\t93.184.216.34\nexample.com.\t\t300\tIN\tA\t93.184.216.35\n"

        assert parse_ttl(_dig(stdout)) == 3600

    def test_ttl_missing(self):
        """测试没有应答记录"""
        assert parse_ttl(_dig("")) is None

    def test_ttl_unexpected_shape(self):
        """测试第二列不是数字"""
        with pytest.raises(ParseError):
            parse_ttl(_dig("garbage\n"))

    def test_nameservers(self):
        """测试NS记录去掉末尾的点"""
        ns = parse_nameservers(_dig("ns1.cloudflare.com.\nns2.cloudflare.com.\n"))

        assert ns == ["ns1.cloudflare.com", "ns2.cloudflare.com"]


class TestDetectProvider:
    """CDN/托管商识别测试"""

    @pytest.mark.parametrize("nameservers,expected", [
        (["ns1.cloudflare.com"], "Cloudflare"),
        (["ns-123.awsdns-45.com"], "AWS Route53"),
        (["a1-64.akam.net", "ns1.akamai.com"], "Akamai"),
        (["NS1.FASTLY.NET"], "Fastly"),
        (["ns1-01.azure-dns.com"], "Azure"),
        (["ns-cloud-a1.googledomains.com"], "Google Cloud"),
        (["a.iana-servers.net"], None),
        ([], None),
    ])
    def test_known_signatures(self, nameservers, expected):
        """测试内置签名"""
        assert detect_provider(nameservers) == expected

    def test_first_signature_wins(self):
        """测试同时命中多个签名时按签名顺序取第一个"""
        assert detect_provider(["ns1.google.com", "ns1.cloudflare.com"]) == "Cloudflare"

    def test_custom_signatures(self):
        """测试自定义签名"""
        assert detect_provider(["dns1.example-cdn.net"], [("example-cdn", "Example CDN")]) == "Example CDN"
