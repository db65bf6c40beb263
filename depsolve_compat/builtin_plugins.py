"""
depsolve_compat/builtin_plugins.py
==================================
기본 제공 플러그인

- ReactEcosystemPlugin: React 생태계 규칙 + 감지 결과 리포트
- SecurityAuditPlugin: 알려진 취약 버전 범위 감사

두 플러그인 모두 실행 중 상태를 인스턴스에 저장하지 않는다.
중간 결과는 훅 payload(annotations, extras, custom_checks)로만 전달.
"""

from typing import Any, Dict, List, Mapping, Optional

from .errors import VersionParseError
from .hooks import Hook, HookPipeline
from .known_issues import matching_major_rule, minimum_version_rule
from .plugins import BasePlugin
from . import versioning


# =============================================================================
# React 생태계
# =============================================================================

REACT_PACKAGES: Dict[str, str] = {
    "react": "React core library",
    "react-dom": "React DOM renderer",
    "react-router": "React Router (v5)",
    "react-router-dom": "React Router DOM bindings",
    "@types/react": "React TypeScript definitions",
    "@types/react-dom": "React DOM TypeScript definitions",
    "react-scripts": "Create React App scripts",
    "next": "Next.js framework",
    "gatsby": "Gatsby static site generator",
}


class ReactEcosystemPlugin(BasePlugin):
    """React 관련 의존성 규칙과 리포트 섹션"""
    id = "react-ecosystem-plugin"
    version = "1.0.0"
    description = "React ecosystem compatibility checks"
    author = "depsolve"

    def initialize(self, pipeline: HookPipeline):
        self.add_known_issue(minimum_version_rule(
            "react-router-dom", "6.0.0", "react", "16.8.0",
            message="React Router v6 requires React 16.8 or later"
        ))
        self.add_known_issue(matching_major_rule(
            "react", "@types/react",
            message="@types/react major version should match React"
        ))

        self.register_hook(Hook.ANALYZE_PACKAGE, self.tag_package)
        self.register_hook(Hook.AFTER_ANALYZE, self.detect_ecosystem)
        self.register_hook(Hook.CUSTOM_CHECK, self.check_outdated)
        self.register_hook(Hook.FORMAT_REPORT, self.add_report_section)

    def tag_package(self, data: Dict[str, Any]) -> Dict[str, Any]:
        name = data.get("package_name")
        if name in REACT_PACKAGES:
            data["ecosystem"] = "React"
            data["description"] = REACT_PACKAGES[name]
        return data

    def detect_ecosystem(self, data: Dict[str, Any]) -> Dict[str, Any]:
        dependencies = data.get("dependencies") or {}
        packages = {name: rng for name, rng in dependencies.items() if name in REACT_PACKAGES}
        if packages:
            data.setdefault("extras", {})["react_ecosystem"] = {
                "detected": True,
                "packages": packages,
                "has_react_dom": "react-dom" in packages,
                "has_router": "react-router" in packages or "react-router-dom" in packages,
                "has_typescript": "@types/react" in packages,
            }
        return data

    def check_outdated(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """React major 버전이 최신보다 뒤처졌는지"""
        latest = (data.get("latest_versions") or {}).get("react")
        declared = (data.get("dependencies") or {}).get("react")
        if not latest or not declared:
            return data

        try:
            current = versioning.clean_version(declared)
            newest = versioning.clean_version(str(latest.get("latest", "")))
        except VersionParseError:
            return data

        if versioning.major(newest) > versioning.major(current):
            data.setdefault("custom_checks", []).append({
                "type": "react-outdated",
                "plugin": self.id,
                "severity": "warning",
                "message": f"React {current} is behind the latest major release {newest}",
                "current": current,
                "latest": newest,
            })
        return data

    def add_report_section(self, data: Dict[str, Any]) -> Dict[str, Any]:
        report = data.get("report")
        ecosystem = report.extras.get("react_ecosystem") if report is not None else None
        if not ecosystem:
            return data

        lines = ["## React Ecosystem", ""]
        for name, rng in ecosystem["packages"].items():
            lines.append(f"- {name} ({rng}): {REACT_PACKAGES.get(name, 'React package')}")
        lines.append("")
        if ecosystem["has_react_dom"]:
            lines.append("[ok] React DOM is configured")
        else:
            lines.append("[warn] React DOM not found; rendering may be affected")
        if ecosystem["has_router"]:
            lines.append("[ok] React Router detected")
        if ecosystem["has_typescript"]:
            lines.append("[ok] TypeScript definitions detected")

        outdated = [c for c in report.custom_checks if c.get("type") == "react-outdated"]
        for check in outdated:
            lines.append(f"[warn] {check['message']}")

        data.setdefault("additional_reports", []).append("\n".join(lines))
        return data


# =============================================================================
# 보안 감사
# =============================================================================

VULNERABLE_RANGES: Dict[str, List[Dict[str, str]]] = {
    "lodash": [
        {"below": "4.17.12", "severity": "high", "cve": "CVE-2019-10744",
         "description": "Prototype Pollution vulnerability"},
        {"below": "4.17.21", "severity": "medium", "cve": "CVE-2021-23337",
         "description": "Command Injection vulnerability"},
    ],
    "axios": [
        {"below": "0.21.1", "severity": "medium", "cve": "CVE-2020-28168",
         "description": "Server-Side Request Forgery (SSRF)"},
    ],
    "express": [
        {"below": "4.17.1", "severity": "medium", "cve": "CVE-2019-5413",
         "description": "Open Redirect vulnerability"},
    ],
    "react-dom": [
        {"below": "16.13.1", "severity": "medium", "cve": "CVE-2020-15169",
         "description": "XSS vulnerability in development mode"},
    ],
    "minimist": [
        {"below": "1.2.2", "severity": "medium", "cve": "CVE-2020-7598",
         "description": "Prototype Pollution vulnerability"},
    ],
}


def find_vulnerabilities(name: str, version: str,
                         ignore: Optional[List[str]] = None) -> List[Dict[str, str]]:
    """선언 버전이 걸리는 취약 범위 목록"""
    ignored = set(ignore or [])
    hits = []
    for entry in VULNERABLE_RANGES.get(name, []):
        if entry["cve"] in ignored:
            continue
        if versioning.satisfies(version, f"<{entry['below']}"):
            hits.append(dict(entry))
    return hits


class SecurityAuditPlugin(BasePlugin):
    """
    보안 감사 플러그인

    config:
        ignore: 무시할 CVE id 목록
    """
    id = "security-audit-plugin"
    version = "1.0.0"
    description = "Flags dependency versions with known security advisories"
    author = "depsolve"

    def initialize(self, pipeline: HookPipeline):
        self.register_hook(Hook.ANALYZE_PACKAGE, self.audit_package)
        self.register_hook(Hook.CUSTOM_CHECK, self.collect_findings)
        self.register_hook(Hook.FORMAT_REPORT, self.add_audit_block)

    def audit_package(self, data: Dict[str, Any]) -> Dict[str, Any]:
        name = data.get("package_name")
        if name not in VULNERABLE_RANGES:
            return data

        try:
            version = versioning.clean_version(str(data.get("declared_range", "")))
        except VersionParseError:
            return data

        hits = find_vulnerabilities(name, version, self.get_config_value("ignore", []))
        if hits:
            data["vulnerabilities"] = hits
            data["audited_version"] = version
        return data

    def collect_findings(self, data: Dict[str, Any]) -> Dict[str, Any]:
        report = data.get("report")
        if report is None:
            return data

        checks = data.setdefault("custom_checks", [])
        for name, annotation in report.package_annotations.items():
            for vuln in annotation.get("vulnerabilities") or []:
                checks.append({
                    "type": "security-vulnerability",
                    "plugin": self.id,
                    "package": name,
                    "version": annotation.get("audited_version"),
                    "severity": vuln["severity"],
                    "cve": vuln["cve"],
                    "message": f"{name} < {vuln['below']}: {vuln['description']} ({vuln['cve']})",
                })
        return data

    def add_audit_block(self, data: Dict[str, Any]) -> Dict[str, Any]:
        report = data.get("report")
        findings = [
            c for c in (report.custom_checks if report is not None else [])
            if c.get("type") == "security-vulnerability"
        ]

        lines = ["## Security Audit", ""]
        if not findings:
            lines.append("No known vulnerable versions found.")
        else:
            by_severity = _count_by(findings, "severity")
            summary = ", ".join(f"{sev}: {count}" for sev, count in sorted(by_severity.items()))
            lines.append(f"Found {len(findings)} vulnerable version(s) ({summary})")
            lines.append("")
            for finding in findings:
                lines.append(f"- [{finding['severity'].upper()}] {finding['package']}@"
                             f"{finding['version']}: {finding['message']}")

        data.setdefault("additional_reports", []).append("\n".join(lines))
        return data


def _count_by(items: List[Mapping[str, Any]], key: str) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for item in items:
        counts[item[key]] = counts.get(item[key], 0) + 1
    return counts


# =============================================================================
# Registry table
# =============================================================================

BUILTIN_PLUGINS = {
    ReactEcosystemPlugin.id: ReactEcosystemPlugin,
    SecurityAuditPlugin.id: SecurityAuditPlugin,
}


__all__ = [
    'ReactEcosystemPlugin',
    'SecurityAuditPlugin',
    'BUILTIN_PLUGINS',
    'REACT_PACKAGES',
    'VULNERABLE_RANGES',
    'find_vulnerabilities',
]
