"""
DNS查询输出解析器

解析dig输出，提取A记录、TTL、NS记录并识别CDN/托管商
"""
import ipaddress
import re
from typing import List, Optional, Sequence, Tuple

from ...models.results import CommandResult
from .base import ParseError, ensure_tool_available

# 按顺序匹配，命中第一个即返回
DEFAULT_PROVIDER_SIGNATURES: Tuple[Tuple[str, str], ...] = (
    ("cloudflare", "Cloudflare"),
    ("awsdns", "AWS Route53"),
    ("akamai", "Akamai"),
    ("fastly", "Fastly"),
    ("azure", "Azure"),
    ("google", "Google Cloud"),
)

_HOSTNAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+(\.[A-Za-z0-9_-]+)*\.?$")


def _answer_lines(stdout: str) -> List[str]:
    """去掉空行和dig注释行"""
    return [
        line.strip()
        for line in stdout.splitlines()
        if line.strip() and not line.strip().startswith(";")
    ]


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def parse_a_records(result: CommandResult) -> Tuple[List[str], List[str]]:
    """
    解析 `dig +short <domain> A` 输出

    Args:
        result: 命令执行结果

    Returns:
        (解析到的IP列表, CNAME链)，IP保持返回顺序且不去重

    Raises:
        ToolUnavailableError: dig不存在
        ParseError: 出现既不是IP也不是主机名的行

    示例输入:
        www.example.com.cdn.cloudflare.net.
        104.16.123.96
        104.16.124.96
    """
    ensure_tool_available(result)

    ips: List[str] = []
    cnames: List[str] = []
    for line in _answer_lines(result.stdout):
        if _is_ip(line):
            ips.append(line)
        elif _HOSTNAME_PATTERN.match(line):
            cnames.append(line.rstrip("."))
        else:
            raise ParseError(f"无法识别的dig输出行: {line!r}", result.stdout)

    return ips, cnames


def parse_ttl(result: CommandResult) -> Optional[int]:
    """
    解析 `dig <domain> +noall +answer` 输出中的TTL

    取第一条应答记录的第二列

    示例输入:
        example.com.		3600	IN	A	93.184.216.34
    """
    for line in _answer_lines(result.stdout):
        columns = line.split()
        if len(columns) >= 2 and columns[1].isdigit():
            return int(columns[1])
        raise ParseError(f"无法从应答记录中提取TTL: {line!r}", result.stdout)
    return None


def parse_nameservers(result: CommandResult) -> List[str]:
    """
    解析 `dig <domain> NS +short` 输出

    示例输入:
        ns1.cloudflare.com.
        ns2.cloudflare.com.
    """
    nameservers = []
    for line in _answer_lines(result.stdout):
        if not _HOSTNAME_PATTERN.match(line):
            raise ParseError(f"无法识别的NS记录: {line!r}", result.stdout)
        nameservers.append(line.rstrip("."))
    return nameservers


def detect_provider(
    hostnames: Sequence[str],
    signatures: Sequence[Tuple[str, str]] = DEFAULT_PROVIDER_SIGNATURES
) -> Optional[str]:
    """
    根据NS记录和CNAME链识别CDN/托管商

    大小写不敏感的子串匹配，第一个命中的签名生效

    Args:
        hostnames: NS记录和CNAME链中的主机名
        signatures: (子串, 名称) 列表

    Returns:
        托管商名称，未识别时为None
    """
    joined = " ".join(hostnames).lower()
    for needle, label in signatures:
        if needle.lower() in joined:
            return label
    return None
