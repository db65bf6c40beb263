#!/usr/bin/env python3
"""
depsolve_compat/tests.py
========================
통합 테스트

실행:
    python -m depsolve_compat.tests
"""

import asyncio
import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout, redirect_stderr
from itertools import combinations
from pathlib import Path

from .models import (
    CheckSource, CompatibilityReport, KnownIssueRule, PackageMetadata,
    PairStatus, make_pair_key,
)
from .errors import (
    HookExecutionError, PluginLoadError, PluginNotLoadedError, VersionParseError
)
from .versioning import (
    clean_version, distance, lt, max_satisfying, satisfies, version_key
)
from .providers import StaticMetadataProvider
from .known_issues import (
    KnownIssuesRegistry, matching_minor_rule, parse_rule_file
)
from .compatibility import CompatibilityEngine, find_nearest_version
from .hooks import GlobalConfig, Hook, HookPipeline
from .plugins import BasePlugin, PluginConfig, PluginRegistry
from .builtin_plugins import BUILTIN_PLUGINS, ReactEcosystemPlugin, SecurityAuditPlugin
from .analyzer import AnalysisContext, UpgradeAnalyzer, analyze
from .reporters import ConsoleReporter, JsonReporter, MarkdownReporter, prepare_report
from .cli import main


def meta(*versions, peers=None):
    """테스트용 메타데이터 페이로드"""
    peers = peers or {}
    return {
        "versions": {
            v: {"peerDependencies": dict(peers.get(v, {}))} for v in versions
        }
    }


class TestVersioning(unittest.TestCase):
    """버전/범위 테스트"""

    def test_clean_version(self):
        self.assertEqual(clean_version("^17.0.0"), "17.0.0")
        self.assertEqual(clean_version(">=16.8.0"), "16.8.0")
        self.assertEqual(clean_version("~1.2.3-beta.1"), "1.2.3-beta.1")
        with self.assertRaises(VersionParseError):
            clean_version("latest")

    def test_caret_and_tilde(self):
        self.assertTrue(satisfies("17.0.2", "^17.0.0"))
        self.assertFalse(satisfies("18.0.0", "^17.0.0"))
        self.assertTrue(satisfies("0.2.5", "^0.2.3"))
        self.assertFalse(satisfies("0.3.0", "^0.2.3"))
        self.assertTrue(satisfies("1.2.9", "~1.2.3"))
        self.assertFalse(satisfies("1.3.0", "~1.2.3"))

    def test_x_ranges_hyphen_and_or(self):
        self.assertTrue(satisfies("1.9.9", "1.x"))
        self.assertFalse(satisfies("2.0.0", "1.x"))
        self.assertTrue(satisfies("3.1.4", "*"))
        self.assertTrue(satisfies("3.1.4", ""))
        self.assertTrue(satisfies("2.3.4", "1.2.3 - 2.3.4"))
        self.assertFalse(satisfies("2.3.5", "1.2.3 - 2.3.4"))
        self.assertTrue(satisfies("17.0.0", "^16.8.0 || ^17.0.0"))
        self.assertTrue(satisfies("16.8.0", ">=16.8.0 <18.0.0"))

    def test_prerelease_rule(self):
        self.assertFalse(satisfies("1.0.0-beta.2", "^1.0.0"))
        self.assertTrue(satisfies("1.0.0-beta.2", ">=1.0.0-beta.1"))
        self.assertTrue(lt("1.0.0-beta", "1.0.0"))
        self.assertTrue(lt("1.0.0-alpha.1", "1.0.0-alpha.beta"))
        self.assertEqual(
            sorted(["2.0.0", "1.0.0", "1.0.0-beta", "1.10.0", "1.2.0"], key=version_key),
            ["1.0.0-beta", "1.0.0", "1.2.0", "1.10.0", "2.0.0"]
        )

    def test_invalid_input_never_raises(self):
        self.assertFalse(satisfies("not-a-version", "^1.0.0"))
        self.assertIsNone(max_satisfying(["not-a-version"], "^1.0.0"))

    def test_max_satisfying(self):
        self.assertEqual(max_satisfying(["1.0.0", "1.5.0", "2.0.0"], "^1.0.0"), "1.5.0")
        self.assertIsNone(max_satisfying(["2.0.0"], "^1.0.0"))

    def test_distance_follows_version_order(self):
        self.assertLess(distance("1.0.0", "1.0.5"), distance("1.0.0", "1.1.0"))
        self.assertLess(distance("1.9.9", "1.0.0"), distance("2.0.0", "1.0.0"))
        self.assertEqual(distance("2.0.0", "1.0.0"), distance("1.0.0", "2.0.0"))


class TestKnownIssues(unittest.TestCase):
    """Known Issues 규칙 테스트"""

    def test_default_react_rule(self):
        registry = KnownIssuesRegistry.with_defaults()
        match = registry.evaluate("react", "17.0.2", "react-dom", "16.14.0")
        self.assertIsNotNone(match)
        self.assertEqual(match.recommendation, {"react": "17.0.2", "react-dom": "17.0.2"})

        self.assertIsNone(registry.evaluate("react", "17.0.2", "react-dom", "17.0.1"))

    def test_unordered_pair_matching(self):
        registry = KnownIssuesRegistry.with_defaults()
        match = registry.evaluate("eslint-plugin-react", "7.20.0", "eslint", "8.1.0")
        self.assertIsNotNone(match)
        self.assertEqual(match.recommendation["eslint-plugin-react"], "7.28.0")
        self.assertEqual(match.recommendation["eslint"], "8.1.0")

    def test_first_match_precedence(self):
        registry = KnownIssuesRegistry([
            KnownIssueRule(("a", "b"), lambda va, vb: False, "never"),
            KnownIssueRule(("a", "b"), lambda va, vb: True, "first"),
            KnownIssueRule(("b", "a"), lambda va, vb: True, "second"),
        ])
        match = registry.evaluate("a", "1.0.0", "b", "1.0.0")
        self.assertEqual(match.reason, "first")

    def test_raising_predicate_is_skipped(self):
        def boom(va, vb):
            raise RuntimeError("bad rule")

        registry = KnownIssuesRegistry([
            KnownIssueRule(("a", "b"), boom, "broken"),
            KnownIssueRule(("a", "b"), lambda va, vb: True, "works"),
        ])
        with self.assertLogs("depsolve_compat.known_issues", level="WARNING"):
            match = registry.evaluate("a", "1.0.0", "b", "1.0.0")
        self.assertEqual(match.reason, "works")

    def test_unsound_recommendation_dropped(self):
        rule = KnownIssueRule(
            ("a", "b"), lambda va, vb: True, "always", recommend=lambda va, vb: {"a": va}
        )
        match = KnownIssuesRegistry([rule]).evaluate("a", "1.0.0", "b", "1.0.0")
        self.assertIsNotNone(match)
        self.assertIsNone(match.recommendation)

    def test_remove_owner(self):
        registry = KnownIssuesRegistry.with_defaults()
        before = len(registry)
        registry.register(matching_minor_rule("x", "y", owner="plugin-x"))
        self.assertEqual(registry.remove_owner("plugin-x"), 1)
        self.assertEqual(len(registry), before)

    def test_rule_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "known_issues.yaml"
            path.write_text(
                "rules:\n"
                "  - kind: matching_major\n"
                "    packages: [vue, vue-template-compiler]\n"
                "  - kind: minimum_version\n"
                "    packages: [webpack, webpack-cli]\n"
                "    minimum: ['5.0.0', '4.0.0']\n"
            )
            registry = KnownIssuesRegistry()
            self.assertEqual(registry.load_file(path), 2)
            self.assertIsNotNone(registry.evaluate("vue", "3.0.0", "vue-template-compiler", "2.6.0"))
            self.assertIsNotNone(registry.evaluate("webpack", "5.1.0", "webpack-cli", "3.3.0"))

    def test_malformed_rule_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "known_issues.yaml"
            path.write_text("rules:\n  - kind: nonsense\n    packages: [a, b]\n")
            registry = KnownIssuesRegistry()
            with self.assertLogs("depsolve_compat.known_issues", level="WARNING"):
                self.assertEqual(registry.load_file(path), 0)
            self.assertEqual(len(registry), 0)

            missing = Path(tmpdir) / "missing.yaml"
            self.assertEqual(registry.load_file(missing), 0)

    def test_parse_rule_file_owner(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "rules.yaml"
            path.write_text("rules:\n  - kind: matching_minor\n    packages: [a, b]\n")
            rules = parse_rule_file(path, owner="local")
            self.assertEqual(rules[0].owner, "local")


class TestCompatibilityEngine(unittest.IsolatedAsyncioTestCase):
    """호환성 엔진 테스트"""

    async def test_pair_count_and_buckets(self):
        deps = {"a": "^1.0.0", "b": "^1.0.0", "c": "^1.0.0", "d": "latest"}
        metadata = {name: meta("1.0.0") for name in ("a", "b", "c")}
        engine = CompatibilityEngine(metadata, known_issues=KnownIssuesRegistry())

        report = await engine.check_all(deps)

        self.assertEqual(report.pair_count, 6)
        keys = [p.pair_key for p in report.all_pairs()]
        self.assertEqual(len(keys), len(set(keys)))
        self.assertEqual(set(keys), {make_pair_key(x, y) for x, y in combinations(deps, 2)})
        self.assertEqual(len(report.unknown), 3)
        self.assertEqual(len(report.compatible), 3)

    async def test_major_minor_rule_scenario(self):
        deps = {"ui-core": "^17.0.0", "ui-renderer": "^16.9.0"}
        metadata = {"ui-core": meta("17.0.0"), "ui-renderer": meta("16.9.0")}
        rules = KnownIssuesRegistry([matching_minor_rule("ui-core", "ui-renderer")])
        engine = CompatibilityEngine(metadata, known_issues=rules)

        report = await engine.check_all(deps)

        self.assertEqual(len(report.incompatible), 1)
        pair = report.incompatible[0]
        self.assertEqual(pair.source, CheckSource.KNOWN_ISSUE)
        self.assertEqual(pair.recommendation, {"ui-core": "17.0.0", "ui-renderer": "17.0.0"})
        self.assertEqual(report.recommendations["ui-renderer"][0].version, "17.0.0")
        self.assertEqual(report.recommendations["ui-renderer"][0].with_name, "ui-core")

    async def test_known_issue_recommendation_must_clear_peers(self):
        deps = {"a": "^17.0.0", "b": "^16.9.0"}
        metadata = {
            "a": meta("17.0.0"),
            # 규칙이 추천하는 b 17.0.0은 a 18.x를 요구
            "b": meta("16.9.0", "17.0.0", peers={"17.0.0": {"a": "^18.0.0"}}),
        }
        rules = KnownIssuesRegistry([matching_minor_rule("a", "b")])
        engine = CompatibilityEngine(metadata, known_issues=rules)

        report = await engine.check_all(deps)

        pair = report.incompatible[0]
        self.assertEqual(pair.source, CheckSource.KNOWN_ISSUE)
        self.assertIsNone(pair.recommendation)
        self.assertEqual(report.recommendations, {})

    async def test_every_recommendation_is_compatible(self):
        scenarios = [
            (
                {"app": "^2.0.0", "lib": "^1.5.0"},
                {
                    "app": meta("2.0.0", peers={"2.0.0": {"lib": "^2.0.0"}}),
                    "lib": meta("1.5.0", "2.0.0", "2.1.0", "3.0.0", peers={"2.1.0": {"app": "^3.0.0"}}),
                },
                KnownIssuesRegistry.with_defaults(),
            ),
            (
                {"ui-core": "^17.0.0", "ui-renderer": "^16.9.0"},
                {"ui-core": meta("17.0.0"), "ui-renderer": meta("16.9.0")},
                KnownIssuesRegistry([matching_minor_rule("ui-core", "ui-renderer")]),
            ),
            (
                {"a": "^17.0.0", "b": "^16.9.0"},
                {"a": meta("17.0.0"), "b": meta("16.9.0", "17.0.0", peers={"17.0.0": {"a": "^18.0.0"}})},
                KnownIssuesRegistry([matching_minor_rule("a", "b")]),
            ),
            (
                {"react": "^17.0.2", "react-dom": "^16.14.0"},
                {
                    "react": meta("17.0.2"),
                    "react-dom": meta("16.14.0", "17.0.2", peers={"17.0.2": {"react": "17.0.2"}}),
                },
                KnownIssuesRegistry.with_defaults(),
            ),
        ]

        verified = 0
        for deps, metadata, rules in scenarios:
            engine = CompatibilityEngine(metadata, known_issues=rules)
            report = await engine.check_all(deps)
            resolved = {name: PackageMetadata.from_dict(name, data) for name, data in metadata.items()}

            for pair in report.incompatible:
                if pair.recommendation is None:
                    continue
                result = engine.check_pair(
                    pair.name_a, pair.recommendation[pair.name_a],
                    pair.name_b, pair.recommendation[pair.name_b],
                    resolved
                )
                self.assertEqual(result.status, PairStatus.COMPATIBLE, pair.label)
                verified += 1

        self.assertEqual(verified, 3)

    async def test_malformed_supplied_metadata_is_isolated(self):
        deps = {"a": "^1.0.0", "b": "^1.0.0", "c": "^1.0.0"}
        metadata = {"a": meta("1.0.0"), "b": {"versions": ["1.0.0"]}, "c": "1.0.0"}
        engine = CompatibilityEngine({}, known_issues=KnownIssuesRegistry())

        with self.assertLogs("depsolve_compat.compatibility", level="WARNING"):
            report = await engine.check_all(deps, metadata=metadata)

        self.assertEqual(report.pair_count, 3)
        self.assertEqual(set(report.fetch_errors), {"b", "c"})
        self.assertEqual(len(report.unknown), 3)
        for pair in report.unknown:
            self.assertIn("malformed metadata", pair.reason)

    async def test_pair_keys_do_not_collide(self):
        self.assertNotEqual(make_pair_key("a+b", "c"), make_pair_key("a", "b+c"))
        self.assertEqual(make_pair_key("b", "a"), ("a", "b"))

        deps = {"a": "1.0.0", "a+b": "1.0.0", "b+c": "1.0.0", "c": "1.0.0"}
        metadata = {name: meta("1.0.0") for name in deps}
        report = await CompatibilityEngine(metadata, known_issues=KnownIssuesRegistry()).check_all(deps)

        keys = {p.pair_key for p in report.all_pairs()}
        self.assertEqual(len(keys), report.pair_count)
        self.assertEqual(report.all_pairs()[0].to_dict()["pair_key"], list(report.all_pairs()[0].pair_key))

    async def test_satisfied_peer_scenario(self):
        deps = {"router": "^6.0.0", "core": "^16.8.0"}
        metadata = {
            "router": meta("6.0.0", peers={"6.0.0": {"core": ">=16.8.0"}}),
            "core": meta("16.8.0"),
        }
        report = await CompatibilityEngine(metadata).check_all(deps)

        self.assertEqual(len(report.compatible), 1)
        self.assertEqual(report.compatible[0].status, PairStatus.COMPATIBLE)

    async def test_peer_conflict_recommendation_is_sound(self):
        deps = {"app": "^2.0.0", "lib": "^1.5.0"}
        metadata = {
            "app": meta("2.0.0", peers={"2.0.0": {"lib": "^2.0.0"}}),
            # 2.1.0은 범위를 만족하지만 app 3.x를 요구하므로 추천 불가
            "lib": meta("1.5.0", "2.0.0", "2.1.0", "3.0.0",
                        peers={"2.1.0": {"app": "^3.0.0"}}),
        }
        report = await CompatibilityEngine(metadata).check_all(deps)

        pair = report.incompatible[0]
        self.assertEqual(pair.source, CheckSource.PEER)
        self.assertIn("app requires lib@^2.0.0", pair.reason)
        self.assertIn("1.5.0", pair.reason)
        self.assertEqual(pair.recommendation, {"app": "2.0.0", "lib": "2.0.0"})
        self.assertTrue(satisfies(pair.recommendation["lib"], "^2.0.0"))

    async def test_no_recommendation_when_nothing_satisfies(self):
        deps = {"app": "^2.0.0", "lib": "^1.5.0"}
        metadata = {
            "app": meta("2.0.0", peers={"2.0.0": {"lib": "^2.0.0"}}),
            "lib": meta("1.5.0", "3.0.0"),
        }
        report = await CompatibilityEngine(metadata).check_all(deps)

        self.assertEqual(len(report.incompatible), 1)
        self.assertIsNone(report.incompatible[0].recommendation)
        self.assertEqual(report.recommendations, {})

    async def test_reverse_peer_direction(self):
        deps = {"lib": "^1.0.0", "app": "^2.0.0"}
        metadata = {
            "lib": meta("1.0.0"),
            "app": meta("2.0.0", peers={"2.0.0": {"lib": ">=1.2.0"}}),
        }
        report = await CompatibilityEngine(metadata).check_all(deps)
        self.assertIn("app requires lib@>=1.2.0", report.incompatible[0].reason)

    async def test_fetch_failure_is_isolated(self):
        deps = {"a": "^1.0.0", "ghost": "^1.0.0", "b": "^1.0.0"}
        provider = StaticMetadataProvider({"a": meta("1.0.0"), "b": meta("1.0.0")})

        with self.assertLogs("depsolve_compat.compatibility", level="WARNING"):
            report = await CompatibilityEngine(provider).check_all(deps)

        self.assertEqual(report.pair_count, 3)
        self.assertIn("ghost", report.fetch_errors)
        self.assertEqual(len(report.unknown), 2)
        for pair in report.unknown:
            self.assertIn("package not found in snapshot", pair.reason)
        self.assertEqual(len(report.compatible), 1)

    async def test_raising_callable_provider(self):
        def fetch(name):
            if name == "b":
                raise ConnectionError("registry unreachable")
            return meta("1.0.0")

        with self.assertLogs("depsolve_compat.compatibility", level="WARNING"):
            report = await CompatibilityEngine(fetch).check_all({"a": "1.0.0", "b": "1.0.0"})
        self.assertEqual(report.fetch_errors["b"], "registry unreachable")
        self.assertEqual(len(report.unknown), 1)

    async def test_unparseable_range_is_unknown(self):
        engine = CompatibilityEngine({"a": meta("1.0.0"), "b": meta("1.0.0")})
        result = engine.check_pair("a", "workspace:*", "b", "^1.0.0", {})
        self.assertEqual(result.status, PairStatus.UNKNOWN)
        self.assertIn("workspace:*", result.reason)

    async def test_nearest_version_and_deep_details(self):
        deps = {"a": "^1.0.1", "b": "^2.0.0"}
        metadata = {
            "a": meta("1.0.0", "1.0.2", peers={"1.0.0": {"b": "^2.0.0"}, "1.0.2": {"b": "^3.0.0"}}),
            "b": meta("2.0.0"),
        }
        report = await CompatibilityEngine(metadata).check_all(deps, deep=True)

        # 1.0.0과 1.0.2가 같은 거리 → 먼저 나온 1.0.0 사용
        pair = report.compatible[0]
        self.assertEqual(pair.details["resolved"], {"a": "1.0.0", "b": "2.0.0"})

    def test_find_nearest_version(self):
        data = PackageMetadata.from_dict("a", meta("1.0.0", "1.4.0", "2.0.0"))
        self.assertEqual(find_nearest_version(data, "1.3.0"), "1.4.0")
        self.assertEqual(find_nearest_version(data, "9.0.0"), "2.0.0")
        self.assertIsNone(find_nearest_version(PackageMetadata("empty"), "1.0.0"))

    async def test_determinism(self):
        deps = {"react": "^17.0.2", "react-dom": "^16.14.0", "app": "^1.0.0"}
        metadata = {
            "react": meta("16.14.0", "17.0.2"),
            "react-dom": meta("16.14.0", "17.0.2", peers={"17.0.2": {"react": "17.0.2"}}),
            "app": meta("1.0.0", peers={"1.0.0": {"react": ">=16.8.0"}}),
        }
        engine = CompatibilityEngine(metadata)
        first = await engine.check_all(deps)
        second = await engine.check_all(deps)
        self.assertEqual(first.to_dict(), second.to_dict())

    async def test_upgrade_analysis(self):
        deps = {"app": "^1.0.0", "lib": "^1.0.0", "ghost": "^1.0.0"}
        metadata = {
            "app": meta("1.0.0", "2.0.0", peers={"2.0.0": {"lib": "^2.0.0"}}),
            "lib": meta("1.0.0", "1.1.0"),
        }
        latest = {
            "app": {"current": "1.0.0", "latest": "2.0.0"},
            "lib": {"current": "1.0.0", "latest": "1.1.0"},
            "ghost": {"current": "1.0.0", "latest": "1.0.0"},
            "broken": {"current": "next", "latest": "2.0.0"},
        }
        engine = CompatibilityEngine(metadata)

        with self.assertLogs("depsolve_compat.compatibility", level="WARNING"):
            report = await engine.check_all(deps, latest_versions=latest, metadata=metadata)

        upgrades = report.upgrade_analysis
        self.assertEqual(set(upgrades), {"app", "lib"})
        self.assertFalse(upgrades["app"].can_upgrade)
        self.assertEqual(upgrades["app"].blocking_issues[0].with_name, "lib")
        self.assertIn("requires lib@^2.0.0", upgrades["app"].blocking_issues[0].reason)
        self.assertTrue(upgrades["lib"].can_upgrade)

    async def test_pair_hook_can_reclassify(self):
        pipeline = HookPipeline()

        def policy(data):
            if data["pair_key"] == make_pair_key("a", "b"):
                data["compatible"] = False
                data["reason"] = "blocked by policy"
                data["severity"] = "error"
            return data

        pipeline.register(Hook.CHECK_PAIR_COMPATIBILITY, policy)
        engine = CompatibilityEngine({"a": meta("1.0.0"), "b": meta("1.0.0")}, pipeline=pipeline)

        report = await engine.check_all({"a": "1.0.0", "b": "1.0.0"})

        self.assertEqual(len(report.incompatible), 1)
        pair = report.incompatible[0]
        self.assertEqual(pair.source, CheckSource.HOOK)
        self.assertEqual(pair.reason, "blocked by policy")
        self.assertEqual(pair.details["hook"], {"severity": "error"})

    async def test_before_check_hook_replaces_dependencies(self):
        pipeline = HookPipeline()

        def drop_b(data):
            data["dependencies"].pop("b")

        pipeline.register(Hook.BEFORE_COMPATIBILITY_CHECK, drop_b)
        metadata = {name: meta("1.0.0") for name in "abc"}
        engine = CompatibilityEngine(metadata, pipeline=pipeline)

        report = await engine.check_all({"a": "1.0.0", "b": "1.0.0", "c": "1.0.0"})
        self.assertEqual(report.pair_count, 1)

    async def test_after_check_hook_non_report_ignored(self):
        pipeline = HookPipeline()
        pipeline.register(Hook.AFTER_COMPATIBILITY_CHECK, lambda report: "not a report")
        engine = CompatibilityEngine({"a": meta("1.0.0"), "b": meta("1.0.0")}, pipeline=pipeline)

        with self.assertLogs("depsolve_compat.compatibility", level="WARNING"):
            report = await engine.check_all({"a": "1.0.0", "b": "1.0.0"})
        self.assertIsInstance(report, CompatibilityReport)
        self.assertEqual(report.pair_count, 1)

    async def test_package_annotations(self):
        pipeline = HookPipeline()

        def annotate(data):
            data["seen"] = True
            return data

        pipeline.register(Hook.ANALYZE_PACKAGE, annotate)
        engine = CompatibilityEngine({"a": meta("1.0.0")}, pipeline=pipeline)
        report = await engine.check_all({"a": "^1.0.0"})

        annotation = report.package_annotations["a"]
        self.assertTrue(annotation["seen"])
        self.assertEqual(annotation["declared_range"], "^1.0.0")
        self.assertNotIn("metadata", annotation)


class TestHookPipeline(unittest.IsolatedAsyncioTestCase):
    """훅 파이프라인 테스트"""

    async def test_identity_without_handlers(self):
        payload = {"x": 1}
        result = await HookPipeline().run(Hook.CUSTOM_CHECK, payload)
        self.assertIs(result, payload)

    async def test_registration_order(self):
        pipeline = HookPipeline()

        def first(data):
            return data + ["first"]

        async def second(data):
            return data + ["second"]

        pipeline.register("custom-check", first)
        pipeline.register(Hook.CUSTOM_CHECK, second)

        result = await pipeline.run(Hook.CUSTOM_CHECK, [])
        self.assertEqual(result, ["first", "second"])

    async def test_none_keeps_current_value(self):
        pipeline = HookPipeline()
        pipeline.register(Hook.CUSTOM_CHECK, lambda data: data.update(seen=True))
        result = await pipeline.run(Hook.CUSTOM_CHECK, {})
        self.assertEqual(result, {"seen": True})

    async def test_timeout_isolation(self):
        pipeline = HookPipeline(GlobalConfig(timeout_ms=50))

        async def hang(data):
            await asyncio.Future()

        pipeline.register(Hook.CUSTOM_CHECK, hang, plugin_id="slow")
        pipeline.register(Hook.CUSTOM_CHECK, lambda data: data + ["after"])

        with self.assertLogs("depsolve_compat.hooks", level="ERROR") as logs:
            result = await pipeline.run(Hook.CUSTOM_CHECK, ["before"])

        self.assertEqual(result, ["before", "after"])
        self.assertTrue(any("timed out" in line for line in logs.output))
        self.assertEqual(pipeline.pending_background, 1)

    async def test_exception_isolation(self):
        pipeline = HookPipeline()

        def broken(data):
            raise ValueError("boom")

        pipeline.register(Hook.CUSTOM_CHECK, broken)
        pipeline.register(Hook.CUSTOM_CHECK, lambda data: data + 1)

        with self.assertLogs("depsolve_compat.hooks", level="ERROR"):
            result = await pipeline.run(Hook.CUSTOM_CHECK, 1)
        self.assertEqual(result, 2)

    async def test_fail_fast(self):
        pipeline = HookPipeline(GlobalConfig(timeout_ms=50, fail_on_plugin_error=True))

        async def hang(data):
            await asyncio.Future()

        pipeline.register(Hook.CUSTOM_CHECK, hang, plugin_id="slow")

        with self.assertLogs("depsolve_compat.hooks", level="ERROR"):
            with self.assertRaises(HookExecutionError) as ctx:
                await pipeline.run(Hook.CUSTOM_CHECK, {})
        self.assertTrue(ctx.exception.timed_out)
        self.assertEqual(ctx.exception.plugin_id, "slow")

    async def test_unregister_plugin(self):
        pipeline = HookPipeline()
        pipeline.register(Hook.CUSTOM_CHECK, lambda d: d, plugin_id="p")
        pipeline.register(Hook.FORMAT_REPORT, lambda d: d, plugin_id="p")
        pipeline.register(Hook.FORMAT_REPORT, lambda d: d, plugin_id="other")

        self.assertEqual(pipeline.hooks_for_plugin("p"), ["custom-check", "format-report"])
        self.assertEqual(pipeline.unregister_plugin("p"), 2)
        self.assertEqual(pipeline.hooks_for_plugin("p"), [])
        self.assertEqual(len(pipeline.handlers(Hook.FORMAT_REPORT)), 1)

    def test_register_requires_callable(self):
        with self.assertRaises(TypeError):
            HookPipeline().register(Hook.CUSTOM_CHECK, "not callable")


class TestPluginConfig(unittest.TestCase):
    """플러그인 설정 테스트"""

    def test_missing_file_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = PluginConfig.load(Path(tmpdir) / "plugins.yaml")
        self.assertEqual(config.global_config.timeout_ms, 5000)
        self.assertTrue(config.global_config.logging_enabled)
        self.assertFalse(config.global_config.fail_on_plugin_error)
        self.assertTrue(config.is_enabled("anything"))

    def test_malformed_file_falls_back(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "plugins.yaml"
            for content in ("global: {timeoutMs: 5", "global: 5\n", "plugins: [a]\n"):
                path.write_text(content)
                with self.assertLogs("depsolve_compat.plugins", level="WARNING"):
                    config = PluginConfig.load(path)
                self.assertEqual(config.to_dict(), PluginConfig().to_dict())

    def test_json_input_and_round_trip(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "plugins.json"
            path.write_text(json.dumps({
                "global": {"timeoutMs": 250, "failOnPluginError": True},
                "plugins": {"security-audit-plugin": {"enabled": False, "config": {"ignore": ["CVE-1"]}}},
            }))
            config = PluginConfig.load(path)
            self.assertEqual(config.global_config.timeout_ms, 250)
            self.assertTrue(config.global_config.fail_on_plugin_error)
            self.assertFalse(config.is_enabled("security-audit-plugin"))
            self.assertEqual(config.config_for("security-audit-plugin"), {"ignore": ["CVE-1"]})

            saved = Path(tmpdir) / ".depsolve" / "plugins.yaml"
            config.set_enabled("react-ecosystem-plugin", False)
            config.set_plugin_config("react-ecosystem-plugin", {"verbose": True})
            config.save(saved)

            reloaded = PluginConfig.load(saved)
            self.assertEqual(reloaded.to_dict(), config.to_dict())


class RecordingPlugin(BasePlugin):
    id = "recording-plugin"
    version = "0.1.0"

    def initialize(self, pipeline):
        self.register_hook(Hook.CUSTOM_CHECK, self.record)
        self.add_known_issue(matching_minor_rule("x", "y"))

    def record(self, data):
        data.setdefault("custom_checks", []).append({"type": "recorded", "severity": "info"})
        return data


class BrokenPlugin(BasePlugin):
    id = "broken-plugin"

    def initialize(self, pipeline):
        self.register_hook(Hook.CUSTOM_CHECK, lambda data: data)
        raise RuntimeError("cannot start")


class SlowPlugin(BasePlugin):
    id = "slow-plugin"

    async def initialize(self, pipeline):
        self.register_hook(Hook.CUSTOM_CHECK, lambda data: data)
        await asyncio.Future()


class TestPluginRegistry(unittest.IsolatedAsyncioTestCase):
    """플러그인 레지스트리 테스트"""

    def make_registry(self, config=None):
        known = KnownIssuesRegistry.with_defaults()
        return PluginRegistry(HookPipeline(), config=config, known_issues=known), known

    async def test_load_and_unload(self):
        registry, known = self.make_registry()
        registry.register(RecordingPlugin)
        before = len(known)

        self.assertEqual(await registry.load_all(), ["recording-plugin"])
        self.assertEqual(len(known), before + 1)
        self.assertEqual(registry.pipeline.hooks_for_plugin("recording-plugin"), ["custom-check"])
        self.assertIsInstance(registry.get("recording-plugin"), RecordingPlugin)

        await registry.unload("recording-plugin")
        self.assertEqual(len(known), before)
        self.assertFalse(registry.pipeline.has_handlers(Hook.CUSTOM_CHECK))
        with self.assertRaises(PluginNotLoadedError):
            registry.get("recording-plugin")
        with self.assertRaises(PluginNotLoadedError):
            await registry.unload("recording-plugin")

    async def test_disabled_plugin_registers_nothing(self):
        config = PluginConfig()
        config.set_enabled("recording-plugin", False)
        registry, known = self.make_registry(config)
        registry.register(RecordingPlugin)
        before = len(known)

        with self.assertLogs("depsolve_compat.plugins", level="WARNING"):
            self.assertEqual(await registry.load_all(), [])
        self.assertEqual(registry.pipeline.hooks_for_plugin("recording-plugin"), [])
        self.assertEqual(len(known), before)

        descriptor = registry.descriptors()[0]
        self.assertFalse(descriptor.enabled)
        self.assertEqual(descriptor.registered_hooks, [])

    async def test_failing_plugin_is_isolated(self):
        registry, _ = self.make_registry()
        registry.register(BrokenPlugin)
        registry.register(RecordingPlugin)

        with self.assertLogs("depsolve_compat.plugins", level="ERROR"):
            active = await registry.load_all()

        self.assertEqual(active, ["recording-plugin"])
        self.assertIn("broken-plugin", registry.load_errors)
        self.assertEqual(registry.pipeline.hooks_for_plugin("broken-plugin"), [])

    async def test_fail_on_plugin_error_reraises_after_strip(self):
        config = PluginConfig(global_config=GlobalConfig(fail_on_plugin_error=True))
        registry, known = self.make_registry(config)
        registry.register(BrokenPlugin)
        before = len(known)

        with self.assertLogs("depsolve_compat.plugins", level="ERROR"):
            with self.assertRaises(PluginLoadError):
                await registry.load_all()

        self.assertIn("broken-plugin", registry.load_errors)
        self.assertEqual(registry.pipeline.hooks_for_plugin("broken-plugin"), [])
        self.assertEqual(len(known), before)

    async def test_initialize_timeout(self):
        config = PluginConfig(global_config=GlobalConfig(timeout_ms=50))
        registry, _ = self.make_registry(config)
        registry.register(SlowPlugin)

        with self.assertLogs("depsolve_compat.plugins", level="ERROR"):
            self.assertEqual(await registry.load_all(), [])
        self.assertIn("timed out", registry.load_errors["slow-plugin"])
        self.assertEqual(registry.pipeline.hooks_for_plugin("slow-plugin"), [])

    async def test_factory_with_wrong_id_rejected(self):
        registry, _ = self.make_registry()
        registry.register("other-id", RecordingPlugin)

        with self.assertLogs("depsolve_compat.plugins", level="ERROR"):
            self.assertEqual(await registry.load_all(), [])
        self.assertIn("other-id", registry.load_errors)

    async def test_plugin_config_applied(self):
        config = PluginConfig()
        config.set_plugin_config("recording-plugin", {"level": 3})
        registry, _ = self.make_registry(config)
        registry.register(RecordingPlugin)
        await registry.load_all()

        self.assertEqual(registry.get("recording-plugin").get_config_value("level"), 3)
        self.assertIsNone(registry.get("recording-plugin").get_config_value("missing"))

    async def test_discover_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            plugin_dir = Path(tmpdir)
            (plugin_dir / "tagging.py").write_text(
                "from depsolve_compat.plugins import BasePlugin\n"
                "from depsolve_compat.hooks import Hook\n"
                "\n"
                "\n"
                "class TaggingPlugin(BasePlugin):\n"
                "    id = 'tagging-plugin'\n"
                "    version = '0.2.0'\n"
                "\n"
                "    def initialize(self, pipeline):\n"
                "        self.register_hook(Hook.CUSTOM_CHECK, self.tag)\n"
                "\n"
                "    def tag(self, data):\n"
                "        data.setdefault('custom_checks', []).append({'type': 'tag'})\n"
                "        return data\n"
            )
            (plugin_dir / "_helpers.py").write_text("raise RuntimeError('never imported')\n")
            (plugin_dir / "broken.py").write_text("raise RuntimeError('import failure')\n")

            registry, _ = self.make_registry()
            with self.assertLogs("depsolve_compat.plugins", level="WARNING"):
                found = registry.discover(plugin_dir)

            self.assertEqual(found, ["tagging-plugin"])
            self.assertEqual(await registry.load_all(), ["tagging-plugin"])
            self.assertEqual(registry.descriptors()[0].version, "0.2.0")

    async def test_unload_all(self):
        registry, _ = self.make_registry()
        for plugin_class in BUILTIN_PLUGINS.values():
            registry.register(plugin_class)
        await registry.load_all()
        self.assertEqual(len(registry.active_ids), 2)

        await registry.unload_all()
        self.assertEqual(registry.active_ids, [])
        for hook in Hook:
            self.assertFalse(registry.pipeline.has_handlers(hook))


REACT_SNAPSHOT = {
    "dependencies": {
        "react": "^17.0.2",
        "react-dom": "^17.0.2",
        "lodash": "^4.17.11",
    },
    "metadata": {
        "react": meta("17.0.2"),
        "react-dom": meta("17.0.2", peers={"17.0.2": {"react": "17.0.2"}}),
        "lodash": meta("4.17.11"),
    },
    "latest": {
        "react": {"current": "17.0.2", "latest": "18.2.0"},
    },
}


class TestAnalyzer(unittest.IsolatedAsyncioTestCase):
    """분석기 + 기본 플러그인 테스트"""

    async def test_builtin_plugins(self):
        context = AnalysisContext.create()
        analyzer = UpgradeAnalyzer(REACT_SNAPSHOT["metadata"], context)

        report = await analyzer.analyze(
            REACT_SNAPSHOT["dependencies"], latest_versions=REACT_SNAPSHOT["latest"]
        )

        self.assertEqual(report.pair_count, 3)
        self.assertFalse(report.has_incompatibilities)

        self.assertEqual(report.package_annotations["react"]["ecosystem"], "React")
        vulnerabilities = report.package_annotations["lodash"]["vulnerabilities"]
        self.assertEqual([v["cve"] for v in vulnerabilities], ["CVE-2019-10744", "CVE-2021-23337"])

        types = [c["type"] for c in report.custom_checks]
        self.assertEqual(types.count("security-vulnerability"), 2)
        self.assertIn("react-outdated", types)
        self.assertTrue(report.extras["react_ecosystem"]["has_react_dom"])

        data = await prepare_report(report, context.pipeline, fmt="markdown")
        self.assertEqual(len(data.additional_reports), 2)
        self.assertTrue(data.additional_reports[0].startswith("## React Ecosystem"))
        self.assertIn("CVE-2019-10744", data.additional_reports[1])

        await context.close()

    async def test_react_router_rule(self):
        context = AnalysisContext.create()
        analyzer = UpgradeAnalyzer(
            {"react": meta("16.4.0"), "react-router-dom": meta("6.0.0")}, context
        )
        report = await analyzer.analyze({"react": "^16.4.0", "react-router-dom": "^6.0.0"})

        pair = report.incompatible[0]
        self.assertEqual(pair.source, CheckSource.KNOWN_ISSUE)
        self.assertEqual(pair.recommendation, {"react-router-dom": "6.0.0", "react": "16.8.0"})

        await context.close()
        self.assertEqual(len(context.known_issues), len(KnownIssuesRegistry.with_defaults()))

    async def test_security_ignore_config(self):
        config = PluginConfig()
        config.set_plugin_config(SecurityAuditPlugin.id, {"ignore": ["CVE-2019-10744"]})
        config.set_enabled(ReactEcosystemPlugin.id, False)
        context = AnalysisContext.create(config=config)

        with self.assertLogs("depsolve_compat.plugins", level="WARNING"):
            report = await UpgradeAnalyzer({"lodash": meta("4.17.11")}, context).analyze(
                {"lodash": "4.17.11"}
            )
        cves = [c["cve"] for c in report.custom_checks]
        self.assertEqual(cves, ["CVE-2021-23337"])
        await context.close()


class TestSyncAnalyze(unittest.TestCase):
    """동기 편의 함수"""

    def test_analyze(self):
        report = analyze(
            {"ui-core": "^17.0.0", "ui-renderer": "^16.9.0"},
            {"ui-core": meta("17.0.0"), "ui-renderer": meta("16.9.0")},
        )
        self.assertEqual(report.pair_count, 1)
        self.assertEqual(len(report.compatible), 1)


class TestReporters(unittest.IsolatedAsyncioTestCase):
    """리포터 테스트"""

    async def make_data(self):
        metadata = {
            "app": meta("2.0.0", peers={"2.0.0": {"lib": "^2.0.0"}}),
            "lib": meta("1.5.0", "2.0.0"),
        }
        report = await CompatibilityEngine(metadata).check_all({"app": "^2.0.0", "lib": "^1.5.0"})

        pipeline = HookPipeline()

        def extra_block(data):
            data["additional_reports"].append("## Extra\nfrom a plugin")
            return data

        pipeline.register(Hook.FORMAT_REPORT, extra_block)
        return await prepare_report(report, pipeline, fmt="console")

    async def test_console(self):
        data = await self.make_data()
        output = io.StringIO()
        ConsoleReporter(output=output, use_color=False).report(data)
        text = output.getvalue()

        self.assertIn("Incompatible Pairs (1)", text)
        self.assertIn("app@2.0.0, lib@2.0.0", text)
        self.assertTrue(text.rstrip().endswith("from a plugin"))
        self.assertNotIn("\033[", text)

    async def test_markdown(self):
        data = await self.make_data()
        output = io.StringIO()
        MarkdownReporter(output=output).report(data)
        text = output.getvalue()

        self.assertIn("# depsolve Compatibility Report", text)
        self.assertIn("| Incompatible | 1 |", text)
        self.assertIn("## Extra", text)

    async def test_json(self):
        data = await self.make_data()
        output = io.StringIO()
        JsonReporter(output=output).report(data)
        payload = json.loads(output.getvalue())

        self.assertEqual(len(payload["incompatible"]), 1)
        self.assertEqual(payload["additional_reports"], ["## Extra\nfrom a plugin"])

    async def test_plain_report_accepted(self):
        output = io.StringIO()
        JsonReporter(output=output).report(CompatibilityReport())
        self.assertEqual(json.loads(output.getvalue())["compatible"], [])


class TestCli(unittest.TestCase):
    """CLI 테스트"""

    def run_cli(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main(list(argv))
        return code, out.getvalue(), err.getvalue()

    def test_check_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            snapshot = tmp / "snapshot.json"
            snapshot.write_text(json.dumps({
                "dependencies": {"react": "^17.0.2", "react-dom": "^16.14.0"},
                "metadata": {"react": meta("17.0.2"), "react-dom": meta("16.14.0", "17.0.2")},
            }))

            code, out, _ = self.run_cli(
                "check", str(snapshot), "--format", "json", "--no-builtin",
                "--plugins-config", str(tmp / "plugins.yaml"),
            )

        self.assertEqual(code, 1)
        payload = json.loads(out)
        self.assertEqual(payload["incompatible"][0]["recommendation"],
                         {"react": "17.0.2", "react-dom": "17.0.2"})

    def test_check_plugin_load_failure_exits_2(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            snapshot = tmp / "snapshot.json"
            snapshot.write_text(json.dumps({
                "dependencies": {"a": "1.0.0", "b": "1.0.0"},
                "metadata": {"a": meta("1.0.0"), "b": meta("1.0.0")},
            }))
            config_path = tmp / "plugins.yaml"
            config_path.write_text("global:\n  failOnPluginError: true\n")
            plugin_dir = tmp / "plugins"
            plugin_dir.mkdir()
            (plugin_dir / "exploding.py").write_text(
                "from depsolve_compat.plugins import BasePlugin\n"
                "\n"
                "\n"
                "class ExplodingPlugin(BasePlugin):\n"
                "    id = 'exploding-plugin'\n"
                "\n"
                "    def initialize(self, pipeline):\n"
                "        raise RuntimeError('cannot start')\n"
            )

            code, out, err = self.run_cli(
                "check", str(snapshot), "--no-builtin",
                "--plugins-config", str(config_path), "--plugin-dir", str(plugin_dir),
            )

        self.assertEqual(code, 2)
        self.assertIn("exploding-plugin", err)
        self.assertEqual(out, "")

    def test_check_missing_snapshot(self):
        code, _, err = self.run_cli("check", "/nonexistent/snapshot.json")
        self.assertEqual(code, 2)
        self.assertIn("Error", err)

    def test_plugins_enable_disable(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "plugins.yaml"

            code, _, _ = self.run_cli(
                "plugins", "disable", "security-audit-plugin", "--plugins-config", str(config_path)
            )
            self.assertEqual(code, 0)
            self.assertFalse(PluginConfig.load(config_path).is_enabled("security-audit-plugin"))

            code, out, _ = self.run_cli("plugins", "list", "--plugins-config", str(config_path))
            self.assertEqual(code, 0)
            self.assertIn("security-audit-plugin (1.0.0) [disabled]", out)
            self.assertIn("react-ecosystem-plugin (1.0.0) [enabled]", out)

            self.run_cli("plugins", "enable", "security-audit-plugin", "--plugins-config", str(config_path))
            self.assertTrue(PluginConfig.load(config_path).is_enabled("security-audit-plugin"))

            code, _, _ = self.run_cli(
                "plugins", "configure", "security-audit-plugin",
                "--set", "ignore=[CVE-2019-10744]", "--plugins-config", str(config_path)
            )
            self.assertEqual(code, 0)
            self.assertEqual(
                PluginConfig.load(config_path).config_for("security-audit-plugin"),
                {"ignore": ["CVE-2019-10744"]}
            )


def run_tests():
    """테스트 실행"""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestVersioning))
    suite.addTests(loader.loadTestsFromTestCase(TestKnownIssues))
    suite.addTests(loader.loadTestsFromTestCase(TestCompatibilityEngine))
    suite.addTests(loader.loadTestsFromTestCase(TestHookPipeline))
    suite.addTests(loader.loadTestsFromTestCase(TestPluginConfig))
    suite.addTests(loader.loadTestsFromTestCase(TestPluginRegistry))
    suite.addTests(loader.loadTestsFromTestCase(TestAnalyzer))
    suite.addTests(loader.loadTestsFromTestCase(TestSyncAnalyze))
    suite.addTests(loader.loadTestsFromTestCase(TestReporters))
    suite.addTests(loader.loadTestsFromTestCase(TestCli))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    return 0 if result.wasSuccessful() else 1


if __name__ == '__main__':
    exit(run_tests())
