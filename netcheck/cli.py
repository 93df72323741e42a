"""
CLI命令行入口

使用Typer框架提供命令行接口
"""
import asyncio
import json
import logging
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .agent import DiagnosticPipeline, ProgressEvent, ReportGenerator
from .integrations import ConfigError, DirectoryCaptureSink, load_config
from .models import DiagnosticReport, DiagnosticRequest, OverallStatus, StepStatus

# 加载环境变量
load_dotenv()

app = typer.Typer(
    name="netcheck",
    help="端点网络诊断工具",
    add_completion=False
)
console = Console()

_STATUS_STYLES = {
    StepStatus.PENDING: ("dim", "…"),
    StepStatus.RUNNING: ("cyan", ">"),
    StepStatus.SUCCESS: ("green", "OK"),
    StepStatus.WARNING: ("yellow", "WARN"),
    StepStatus.ERROR: ("red", "FAIL"),
}


def setup_logging(verbose: bool = False) -> None:
    """安装rich日志处理器"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def print_event(event: ProgressEvent) -> None:
    """打印步骤进度"""
    color, icon = _STATUS_STYLES[event.status]
    console.print(f"[{color}]{icon}[/{color}] [bold]{event.step_id.value}[/bold]: {event.message}")


@app.command("diagnose")
def diagnose(
    target: str = typer.Argument(..., help="域名或URL，例如: example.com 或 https://example.com/path"),
    output_dir: Optional[str] = typer.Option(None, "--output", "-o", help="报告输出目录（默认取配置文件）"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="诊断配置文件路径"),
    no_raw: bool = typer.Option(False, "--no-raw", help="不保存探测工具的原始输出"),
    as_json: bool = typer.Option(False, "--json", help="以JSON格式输出报告"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="显示详细日志")
):
    """
    执行端点网络诊断

    示例:
        netcheck diagnose example.com

        netcheck diagnose https://example.com --output /tmp/runs --no-raw
    """
    setup_logging(verbose)

    try:
        config = load_config(config_path)
        request = DiagnosticRequest.from_target(target)
    except (FileNotFoundError, ConfigError, ValueError) as e:
        console.print(f"[red]错误:[/red] {e}")
        raise typer.Exit(code=2)

    output_dir = output_dir or config.output_dir

    if not as_json:
        console.print(f"\n[bold cyan]netcheck - 端点网络诊断[/bold cyan]")
        console.print(f"[dim]{'='*60}[/dim]\n")
        console.print(f"[green]OK[/green] 任务已创建: [bold]{request.run_id}[/bold]")
        console.print(f"  目标: {request.target_url}\n")

    sink = None if no_raw else DirectoryCaptureSink(output_dir, request.run_id)
    pipeline = DiagnosticPipeline.create(config=config, sink=sink)
    if not as_json:
        pipeline.emitter.add_listener(print_event)

    try:
        report = asyncio.run(pipeline.run(request))
    except KeyboardInterrupt:
        console.print("\n[yellow]诊断已取消[/yellow]")
        raise typer.Exit(code=130)

    reporter = ReportGenerator(output_dir)
    paths = reporter.generate(report)

    if as_json:
        console.print_json(json.dumps(report.to_dict(), ensure_ascii=False))
    else:
        print_report(report)
        console.print(f"\n[green]OK[/green] 详细报告已保存: [bold]{paths['markdown']}[/bold]\n")

    if report.overall_status == OverallStatus.FAILED:
        raise typer.Exit(code=1)


def print_report(report: DiagnosticReport) -> None:
    """打印诊断结果表格、问题和建议"""
    table = Table(title=f"诊断结果 - {report.target_url}")
    table.add_column("步骤", style="bold")
    table.add_column("状态")
    table.add_column("耗时", justify="right")
    table.add_column("结果")

    for step in report.steps:
        color, icon = _STATUS_STYLES[step.status]
        duration = f"{step.duration_ms}ms" if step.duration_ms is not None else "-"
        table.add_row(step.id.value, f"[{color}]{icon}[/{color}]", duration, step.result_text or "")

    console.print()
    console.print(table)

    color = "green" if report.score >= 75 else "yellow" if report.score >= 50 else "red"
    console.print(
        f"\n总体等级: [{color}]{report.overall_status.value} ({report.get_status_label()})"
        f" - {report.score}/100[/{color}]"
    )

    if report.issues:
        console.print("\n[bold]发现的问题:[/bold]")
        for issue in report.issues:
            console.print(f"  - [{issue.severity.value}] {issue.title}: {issue.description}")

    if report.recommendations:
        console.print("\n[bold]建议:[/bold]")
        for i, recommendation in enumerate(report.recommendations, 1):
            console.print(f"  {i}. {recommendation}")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="监听地址"),
    port: int = typer.Option(8000, "--port", "-p", help="监听端口"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="显示详细日志")
):
    """启动HTTP API服务"""
    import uvicorn

    setup_logging(verbose)
    console.print(f"[bold cyan]netcheck API[/bold cyan] http://{host}:{port}")
    uvicorn.run("netcheck.api:app", host=host, port=port)


@app.command("version")
def version():
    """显示版本信息"""
    console.print(f"[bold cyan]netcheck[/bold cyan] v{__version__}")
    console.print("端点网络诊断工具")


def main():
    """主入口函数"""
    app()


if __name__ == "__main__":
    main()
