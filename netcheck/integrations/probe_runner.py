"""
探测工具执行客户端

以子进程方式调用本机诊断工具（dig/curl/traceroute），带超时和清理
"""
import asyncio
import logging
import time
from typing import Optional, Sequence

from ..models.results import CommandResult
from ..utils.parsers.base import ToolUnavailableError, floor_ms

logger = logging.getLogger(__name__)


class ProbeRunner:
    """
    本机探测工具执行器

    每次调用独占其子进程；超时或取消时保证杀死并回收子进程

    测试时可替换为任何实现了 invoke(tool, args, timeout) 的对象
    """

    def __init__(self, env: Optional[dict] = None):
        """
        初始化执行器

        Args:
            env: 子进程环境变量（None表示继承当前进程）
        """
        self.env = env

    async def invoke(
        self,
        tool: str,
        args: Sequence[str],
        timeout: float = 30
    ) -> CommandResult:
        """
        执行一个诊断工具

        Args:
            tool: 工具名称
            args: 参数列表
            timeout: 超时时间（秒）

        Returns:
            CommandResult: 超时时 timed_out=True、exit_code=-1

        Raises:
            ToolUnavailableError: 工具不存在或不可执行
        """
        start = time.monotonic()
        logger.debug("[ProbeRunner] 执行: %s %s (timeout=%ss)", tool, " ".join(args), timeout)

        try:
            proc = await asyncio.create_subprocess_exec(
                tool, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ToolUnavailableError(tool, f"无法执行 {tool}: {e}")

        timed_out = False
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            timed_out = True
            stdout_bytes, stderr_bytes = b"", f"{tool} 在 {timeout}s 后超时".encode()
            await self._terminate(proc)
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise

        elapsed_ms = floor_ms((time.monotonic() - start) * 1000)
        exit_code = -1 if timed_out else (proc.returncode if proc.returncode is not None else -1)

        result = CommandResult(
            tool=tool,
            args=list(args),
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            exit_code=exit_code,
            elapsed_ms=elapsed_ms,
            timed_out=timed_out,
        )
        logger.debug("[ProbeRunner] %s", result)
        return result

    @staticmethod
    async def _terminate(proc: asyncio.subprocess.Process) -> None:
        """杀死并回收子进程，避免遗留孤儿进程"""
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()
        logger.debug("[ProbeRunner] 已终止子进程 pid=%s", proc.pid)
