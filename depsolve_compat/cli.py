#!/usr/bin/env python3
"""
depsolve_compat/cli.py
======================
depsolve 호환성 분석 CLI

Usage:
    python -m depsolve_compat check snapshot.json
    python -m depsolve_compat check snapshot.yaml --deep --format markdown
    python -m depsolve_compat plugins list
    python -m depsolve_compat plugins disable security-audit-plugin

snapshot 형식 (JSON 또는 YAML):
    dependencies: {react: "^17.0.2", react-dom: "^16.14.0"}
    metadata:     {react: {versions: {"17.0.2": {peerDependencies: {}}}}}
    latest:       {react: {current: "17.0.2", latest: "18.2.0"}}
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict

import yaml

from . import __version__
from .analyzer import AnalysisContext, UpgradeAnalyzer
from .builtin_plugins import BUILTIN_PLUGINS
from .errors import ConfigParseError, HookExecutionError, PluginLoadError
from .hooks import HookPipeline
from .known_issues import KnownIssuesRegistry
from .models import ReportData
from .plugins import PluginConfig, PluginRegistry
from .reporters import REPORTERS, ConsoleReporter, prepare_report

DEFAULT_RULES_PATH = Path(".depsolve") / "known_issues.yaml"


def load_snapshot(path: Path) -> Dict[str, Any]:
    """
    Raises:
        ConfigParseError: 파일 없음, 파싱 실패, dependencies 누락
    """
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigParseError(str(path), str(e)) from e

    if not isinstance(data, dict) or not isinstance(data.get("dependencies"), dict):
        raise ConfigParseError(str(path), "snapshot must contain a 'dependencies' mapping")

    return {
        "dependencies": {str(k): str(v) for k, v in data["dependencies"].items()},
        "metadata": data.get("metadata") or {},
        "latest": data.get("latest") or {},
    }


def print_header(text: str):
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print('=' * 60)


def _plugins_config_path(args) -> Path:
    if args.plugins_config:
        return Path(args.plugins_config)
    return PluginConfig.default_path()


def build_context(args) -> AnalysisContext:
    config = PluginConfig.load(_plugins_config_path(args))

    known_issues = KnownIssuesRegistry.with_defaults()
    rules_path = Path(args.rules) if args.rules else DEFAULT_RULES_PATH
    if args.rules and not rules_path.exists():
        logging.getLogger(__name__).warning("Rules file not found: %s", rules_path)
    known_issues.load_file(rules_path)

    return AnalysisContext.create(
        config=config,
        builtin=not args.no_builtin,
        plugin_dir=args.plugin_dir,
        known_issues=known_issues
    )


# =============================================================================
# Commands
# =============================================================================

async def _run_check(snapshot: Dict[str, Any], context: AnalysisContext, args) -> ReportData:
    analyzer = UpgradeAnalyzer(snapshot["metadata"], context)
    try:
        report = await analyzer.analyze(
            snapshot["dependencies"],
            latest_versions=snapshot["latest"],
            deep=args.deep
        )
        return await prepare_report(report, context.pipeline, fmt=args.format, output_path=args.output)
    finally:
        await context.close()


def cmd_check(args):
    """스냅샷 파일의 의존성 호환성 분석"""
    try:
        snapshot = load_snapshot(Path(args.snapshot))
    except ConfigParseError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    context = build_context(args)

    try:
        data = asyncio.run(_run_check(snapshot, context, args))
    except (HookExecutionError, PluginLoadError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    reporter_class = REPORTERS.get(data.format, ConsoleReporter)

    if data.output_path:
        with open(data.output_path, 'w', encoding='utf-8') as f:
            reporter_class(output=f).report(data)
        print(f"Report written to {data.output_path}")
    elif reporter_class is ConsoleReporter:
        ConsoleReporter(use_color=not args.no_color, verbose=args.verbose).report(data)
    else:
        reporter_class().report(data)

    # 종료 코드: 비호환 쌍이 있으면 1
    return 1 if data.report.has_incompatibilities else 0


def cmd_plugins(args):
    """플러그인 목록/활성화/비활성화/설정"""
    config_path = _plugins_config_path(args)
    config = PluginConfig.load(config_path)

    if args.action == 'list':
        registry = PluginRegistry(HookPipeline(), config=config)
        for plugin_class in BUILTIN_PLUGINS.values():
            registry.register(plugin_class)
        if args.plugin_dir:
            registry.discover(args.plugin_dir)

        print_header("Plugins")
        for descriptor in registry.descriptors():
            status = "enabled" if descriptor.enabled else "disabled"
            print(f"  • {descriptor.id} ({descriptor.version}) [{status}]")
            if descriptor.description:
                print(f"    {descriptor.description}")
            if descriptor.config:
                print(f"    config: {descriptor.config}")
        print()
        return 0

    if args.action in ('enable', 'disable'):
        config.set_enabled(args.id, args.action == 'enable')
        config.save(config_path)
        print(f"Plugin {args.id} {args.action}d ({config_path})")
        return 0

    if args.action == 'configure':
        values = {}
        for item in args.set or []:
            key, sep, raw = item.partition('=')
            if not sep or not key:
                print(f"Error: expected KEY=VALUE, got '{item}'", file=sys.stderr)
                return 2
            values[key] = yaml.safe_load(raw) if raw else None
        config.set_plugin_config(args.id, values)
        config.save(config_path)
        print(f"Plugin {args.id} configured: {config.config_for(args.id)}")
        return 0

    return 2


# =============================================================================
# Main
# =============================================================================

def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='depsolve-compat',
        description='depsolve 의존성 호환성 분석기'
    )
    parser.add_argument('--version', action='version', version=__version__)

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # check
    p_check = subparsers.add_parser('check', help='의존성 쌍 호환성 분석')
    p_check.add_argument('snapshot', help='스냅샷 파일 (JSON/YAML)')
    p_check.add_argument('--deep', action='store_true', help='쌍별 메타데이터 해석 정보 포함')
    p_check.add_argument('--format', '-f', choices=sorted(REPORTERS),
                         default='console', help='출력 형식')
    p_check.add_argument('--output', '-o', help='리포트 저장 경로')
    p_check.add_argument('--plugins-config', help='플러그인 설정 파일')
    p_check.add_argument('--plugin-dir', help='추가 플러그인 디렉토리')
    p_check.add_argument('--no-builtin', action='store_true', help='기본 플러그인 비활성화')
    p_check.add_argument('--rules', help='Known Issues 규칙 파일')
    p_check.add_argument('--no-color', action='store_true', help='색상 비활성화')
    p_check.add_argument('--verbose', action='store_true', help='상세 출력')

    # plugins
    p_plugins = subparsers.add_parser('plugins', help='플러그인 관리')
    actions = p_plugins.add_subparsers(dest='action', help='Actions')

    p_list = actions.add_parser('list', help='플러그인 목록')
    p_list.add_argument('--plugin-dir', help='추가 플러그인 디렉토리')
    p_list.add_argument('--plugins-config', help='플러그인 설정 파일')

    for name, help_text in (('enable', '플러그인 활성화'), ('disable', '플러그인 비활성화')):
        p_toggle = actions.add_parser(name, help=help_text)
        p_toggle.add_argument('id', help='플러그인 id')
        p_toggle.add_argument('--plugins-config', help='플러그인 설정 파일')

    p_configure = actions.add_parser('configure', help='플러그인 설정 변경')
    p_configure.add_argument('id', help='플러그인 id')
    p_configure.add_argument('--set', action='append', metavar='KEY=VALUE', help='설정 값')
    p_configure.add_argument('--plugins-config', help='플러그인 설정 파일')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, 'verbose', False) else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s"
    )

    if not args.command:
        parser.print_help()
        return 0

    if args.command == 'plugins' and not args.action:
        p_plugins.print_help()
        return 0

    commands = {
        'check': cmd_check,
        'plugins': cmd_plugins,
    }

    return commands[args.command](args)


if __name__ == '__main__':
    sys.exit(main())
