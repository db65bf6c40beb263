"""
depsolve_compat/reporters.py
============================
호환성 분석 결과 리포터

지원 형식:
- Console: ANSI 색상 지원 터미널 출력
- Markdown: 문서화용 마크다운
- JSON: 기계 판독용 JSON

플러그인이 추가한 additional_reports는 본문 뒤에 그대로 붙인다.
"""

import json
import logging
import sys
import os
from typing import IO, Optional, Dict, List, Union
from abc import ABC, abstractmethod

from .hooks import Hook, HookPipeline
from .models import (
    CompatibilityReport, PairResult, ReportData, UpgradeAssessment
)

logger = logging.getLogger(__name__)


# =============================================================================
# 리포트 준비 (report 훅)
# =============================================================================

async def prepare_report(
    report: CompatibilityReport,
    pipeline: Optional[HookPipeline] = None,
    fmt: str = "console",
    output_path: Optional[str] = None
) -> ReportData:
    """
    before-report-generation → format-report → after-report-generation

    format-report payload:
        {content, format, output_path, additional_reports, report}
    """
    if pipeline is None:
        return ReportData(report=report, format=fmt, output_path=output_path)

    updated = await pipeline.run(Hook.BEFORE_REPORT_GENERATION, report)
    if isinstance(updated, CompatibilityReport):
        report = updated
    else:
        logger.warning("Ignoring %s result of type %s",
                       Hook.BEFORE_REPORT_GENERATION.value, type(updated).__name__)

    payload = {
        "content": "",
        "format": fmt,
        "output_path": output_path,
        "additional_reports": [],
        "report": report,
    }
    formatted = await pipeline.run(Hook.FORMAT_REPORT, payload)
    if not isinstance(formatted, dict):
        logger.warning("Ignoring %s result of type %s",
                       Hook.FORMAT_REPORT.value, type(formatted).__name__)
        formatted = payload

    data = ReportData(
        report=report,
        content=str(formatted.get("content") or ""),
        format=str(formatted.get("format") or fmt),
        output_path=formatted.get("output_path"),
        additional_reports=[str(r) for r in formatted.get("additional_reports") or []],
    )

    final = await pipeline.run(Hook.AFTER_REPORT_GENERATION, data)
    if isinstance(final, ReportData):
        data = final
    return data


# =============================================================================
# ANSI 색상 코드
# =============================================================================

class Colors:
    """ANSI 색상 코드"""
    RED = "\033[91m"
    YELLOW = "\033[93m"
    GREEN = "\033[92m"
    GRAY = "\033[90m"
    CYAN = "\033[96m"
    BOLD = "\033[1m"
    RESET = "\033[0m"


# =============================================================================
# 기본 리포터
# =============================================================================

ReportInput = Union[ReportData, CompatibilityReport]


class BaseReporter(ABC):
    """리포터 기본 클래스"""

    def __init__(self, output: Optional[IO[str]] = None):
        self.output = output or sys.stdout

    def write(self, text: str):
        self.output.write(text)

    def writeln(self, text: str = ""):
        self.output.write(text + "\n")

    def report(self, data: ReportInput):
        """리포트 출력 (본문 → content → additional_reports)"""
        if isinstance(data, CompatibilityReport):
            data = ReportData(report=data)
        self.render(data)

    @abstractmethod
    def render(self, data: ReportData):
        pass

    def _write_extra_blocks(self, data: ReportData):
        if data.content:
            self.writeln(data.content.rstrip("\n"))
            self.writeln()
        for block in data.additional_reports:
            self.writeln(block.rstrip("\n"))
            self.writeln()


# =============================================================================
# 콘솔 리포터
# =============================================================================

class ConsoleReporter(BaseReporter):
    """
    콘솔 출력 리포터 (ANSI 색상 지원)

    리포트 구조:
    1. 요약 (Summary)
    2. 비호환 쌍 + 추천 버전
    3. 판정 불가 쌍, 조회 실패
    4. 업그레이드 분석
    5. 플러그인 검사 / 플러그인 리포트
    """

    def __init__(
        self,
        output: Optional[IO[str]] = None,
        use_color: bool = True,
        verbose: bool = False
    ):
        super().__init__(output)
        self.verbose = verbose

        self.use_color = use_color
        if os.getenv("NO_COLOR"):
            self.use_color = False
        if hasattr(self.output, 'isatty') and not self.output.isatty():
            self.use_color = False

    def color(self, text: str, color: str) -> str:
        if self.use_color:
            return f"{color}{text}{Colors.RESET}"
        return text

    def render(self, data: ReportData):
        report = data.report
        self._report_header()
        self._report_summary(report)

        if report.incompatible:
            self._report_incompatible(report.incompatible)
        if report.unknown:
            self._report_unknown(report.unknown)
        if report.fetch_errors:
            self._report_fetch_errors(report.fetch_errors)
        if self.verbose and report.compatible:
            self._report_compatible(report.compatible)
        if report.upgrade_analysis:
            self._report_upgrades(list(report.upgrade_analysis.values()))
        if report.custom_checks:
            self._report_custom_checks(report.custom_checks)

        self._write_extra_blocks(data)

    def _report_header(self):
        self.writeln()
        self.writeln(self.color("=" * 60, Colors.CYAN))
        self.writeln(self.color("  depsolve Compatibility Report", Colors.BOLD))
        self.writeln(self.color("=" * 60, Colors.CYAN))
        self.writeln()

    def _report_summary(self, report: CompatibilityReport):
        self.writeln(self.color("--- Summary ---", Colors.BOLD))
        self.writeln(f"  Pairs checked: {report.pair_count}")
        self.writeln(f"  {self.color('Compatible', Colors.GREEN)}: {len(report.compatible)}")
        self.writeln(f"  {self.color('Incompatible', Colors.RED)}: {len(report.incompatible)}")
        self.writeln(f"  {self.color('Unknown', Colors.YELLOW)}: {len(report.unknown)}")
        self.writeln()

    def _report_incompatible(self, pairs: List[PairResult]):
        self.writeln(self.color(f"--- Incompatible Pairs ({len(pairs)}) ---", Colors.BOLD))
        for pair in pairs:
            self.writeln()
            self.writeln(f"  {self.color('✗', Colors.RED)} {pair.label}")
            if pair.reason:
                self.writeln(f"    Reason: {pair.reason}")
            if pair.recommendation:
                rec = ", ".join(f"{name}@{v}" for name, v in pair.recommendation.items())
                self.writeln(f"    Recommended: {self.color(rec, Colors.GREEN)}")
            if self.verbose and pair.details:
                self.writeln(f"    Details: {json.dumps(pair.details, default=str)}")
        self.writeln()

    def _report_unknown(self, pairs: List[PairResult]):
        self.writeln(self.color(f"--- Unknown ({len(pairs)}) ---", Colors.BOLD))
        for pair in pairs:
            self.writeln(f"  {self.color('?', Colors.YELLOW)} {pair.label}: {pair.reason}")
        self.writeln()

    def _report_fetch_errors(self, errors: Dict[str, str]):
        self.writeln(self.color("--- Metadata Errors ---", Colors.BOLD))
        for name, reason in errors.items():
            self.writeln(f"  • {name}: {reason}")
        self.writeln()

    def _report_compatible(self, pairs: List[PairResult]):
        self.writeln(self.color(f"--- Compatible Pairs ({len(pairs)}) ---", Colors.BOLD))
        for pair in pairs:
            self.writeln(f"  {self.color('✓', Colors.GREEN)} {pair.label}")
        self.writeln()

    def _report_upgrades(self, upgrades: List[UpgradeAssessment]):
        self.writeln(self.color("--- Upgrade Analysis ---", Colors.BOLD))
        for entry in upgrades:
            mark = self.color('✓', Colors.GREEN) if entry.can_upgrade else self.color('✗', Colors.RED)
            self.writeln(f"  {mark} {entry.name}: {entry.current} → {entry.latest}")
            for issue in entry.blocking_issues:
                self.writeln(f"      blocked by {issue.with_name}: {issue.reason}")
        self.writeln()

    def _report_custom_checks(self, checks: List[Dict]):
        self.writeln(self.color(f"--- Plugin Checks ({len(checks)}) ---", Colors.BOLD))
        for check in checks:
            severity = str(check.get("severity", "info")).upper()
            self.writeln(f"  [{severity}] {check.get('message', check.get('type', ''))}")
        self.writeln()


# =============================================================================
# Markdown 리포터
# =============================================================================

class MarkdownReporter(BaseReporter):
    """Markdown 형식 리포터"""

    def render(self, data: ReportData):
        report = data.report
        self.writeln("# depsolve Compatibility Report")
        self.writeln()

        self.writeln("## Summary")
        self.writeln()
        self.writeln("| Metric | Value |")
        self.writeln("|--------|-------|")
        self.writeln(f"| Pairs checked | {report.pair_count} |")
        self.writeln(f"| Compatible | {len(report.compatible)} |")
        self.writeln(f"| Incompatible | {len(report.incompatible)} |")
        self.writeln(f"| Unknown | {len(report.unknown)} |")
        self.writeln()

        if report.incompatible:
            self.writeln("## Incompatible Pairs")
            self.writeln()
            for pair in report.incompatible:
                self.writeln(f"### {pair.label}")
                self.writeln()
                self.writeln(f"- **Reason**: {pair.reason}")
                self.writeln(f"- **Source**: {pair.source.value}")
                if pair.recommendation:
                    rec = ", ".join(f"`{name}@{v}`" for name, v in pair.recommendation.items())
                    self.writeln(f"- **Recommended**: {rec}")
                self.writeln()

        if report.unknown:
            self.writeln("## Unknown")
            self.writeln()
            for pair in report.unknown:
                self.writeln(f"- {pair.label}: {pair.reason}")
            self.writeln()

        if report.upgrade_analysis:
            self.writeln("## Upgrade Analysis")
            self.writeln()
            self.writeln("| Package | Current | Latest | Upgradable |")
            self.writeln("|---------|---------|--------|------------|")
            for entry in report.upgrade_analysis.values():
                ok = "yes" if entry.can_upgrade else "no"
                self.writeln(f"| {entry.name} | {entry.current} | {entry.latest} | {ok} |")
            self.writeln()

        if report.custom_checks:
            self.writeln("## Plugin Checks")
            self.writeln()
            for check in report.custom_checks:
                self.writeln(f"- **{check.get('severity', 'info')}**: {check.get('message', '')}")
            self.writeln()

        self._write_extra_blocks(data)


# =============================================================================
# JSON 리포터
# =============================================================================

class JsonReporter(BaseReporter):
    """JSON 형식 리포터"""

    def __init__(self, output: Optional[IO[str]] = None, indent: int = 2):
        super().__init__(output)
        self.indent = indent

    def render(self, data: ReportData):
        payload = data.report.to_dict()
        payload["content"] = data.content
        payload["additional_reports"] = list(data.additional_reports)
        self.writeln(json.dumps(payload, indent=self.indent, default=str))


REPORTERS = {
    "console": ConsoleReporter,
    "markdown": MarkdownReporter,
    "json": JsonReporter,
}


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    'prepare_report',
    'Colors',
    'BaseReporter',
    'ConsoleReporter',
    'MarkdownReporter',
    'JsonReporter',
    'REPORTERS',
]
