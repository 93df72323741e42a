"""
报告生成器

把诊断报告导出为Markdown和JSON文件
"""
import json
from pathlib import Path
from typing import Dict, Union

from ..models.report import DiagnosticReport


class ReportGenerator:
    """
    报告生成器

    每次运行的报告写入 <output_dir>/<run_id>/，与原始输出放在一起
    """

    def __init__(self, output_dir: Union[str, Path] = "runtime/runs"):
        """
        初始化报告生成器

        Args:
            output_dir: 输出根目录
        """
        self.output_dir = Path(output_dir)

    def run_dir(self, report: DiagnosticReport) -> Path:
        return self.output_dir / report.run_id

    def generate(self, report: DiagnosticReport) -> Dict[str, str]:
        """
        生成报告文件

        Args:
            report: 诊断报告对象

        Returns:
            {"markdown": 路径, "json": 路径}
        """
        run_dir = self.run_dir(report)
        run_dir.mkdir(parents=True, exist_ok=True)
        report.output_dir = str(run_dir)

        md_path = run_dir / f"diagnostic_report_{report.run_id}.md"
        with open(md_path, 'w', encoding='utf-8') as f:
            f.write(report.to_markdown())

        json_path = run_dir / f"diagnostic_report_{report.run_id}.json"
        with open(json_path, 'w', encoding='utf-8') as f:
            json.dump(report.to_dict(), f, ensure_ascii=False, indent=2)

        return {"markdown": str(md_path), "json": str(json_path)}
