"""
Unit Tests — Vulnerability Scanner Gate
========================================
Trivy JSON parsing and the publish gate policy. No real scanner runs:
the command runner is replaced with a stub returning canned output.
"""
import json

import pytest

from deployer.core.errors import VulnerabilityGateError
from deployer.executor.command_runner import CommandResult
from deployer.services.vuln_scanner import (
    build_trivy_command,
    evaluate_gate,
    is_blocking,
    parse_trivy_report,
    scan_image,
)
from deployer.models.scan_report import Vulnerability

IMAGE = "acme/ci-cd-app:v1.0.0-abcdef1"


def _report(*results):
    return json.dumps({"SchemaVersion": 2, "ArtifactName": IMAGE, "Results": list(results)})


def _result(cls, vulns, target="target"):
    return {"Target": target, "Class": cls, "Type": "debian", "Vulnerabilities": vulns}


def _vuln(vid, severity="CRITICAL", fixed="1.2.4"):
    v = {
        "VulnerabilityID": vid,
        "PkgName": "openssl",
        "InstalledVersion": "1.2.3",
        "Severity": severity,
    }
    if fixed is not None:
        v["FixedVersion"] = fixed
    return v


def _runner(stdout="", exit_code=0, error=None):
    calls = []

    def run(args, **kwargs):
        calls.append((args, kwargs))
        return CommandResult(args=list(args), exit_code=exit_code, stdout=stdout, error=error)

    run.calls = calls
    return run


class TestCommand:

    def test_trivy_flags(self):
        cmd = build_trivy_command(IMAGE)
        assert cmd[:2] == ["trivy", "image"]
        assert cmd[-1] == IMAGE
        assert "--ignore-unfixed" in cmd
        assert cmd[cmd.index("--severity") + 1] == "CRITICAL"
        assert cmd[cmd.index("--vuln-type") + 1] == "os,library"
        # the gate decision is taken in Python, not by trivy's exit code
        assert cmd[cmd.index("--exit-code") + 1] == "0"


class TestParse:

    def test_flattens_results(self):
        raw = _report(
            _result("os-pkgs", [_vuln("CVE-1")]),
            _result("lang-pkgs", [_vuln("CVE-2", fixed=None)], target="requirements.txt"),
        )
        vulns = parse_trivy_report(raw)
        assert [v.vulnerability_id for v in vulns] == ["CVE-1", "CVE-2"]
        assert vulns[1].result_class == "lang-pkgs"
        assert vulns[1].fixed_version == ""

    def test_null_vulnerabilities_is_clean(self):
        raw = json.dumps({"Results": [{"Target": "x", "Class": "os-pkgs", "Vulnerabilities": None}]})
        assert parse_trivy_report(raw) == []

    def test_empty_output_is_clean(self):
        assert parse_trivy_report("") == []


class TestPolicy:

    def test_fixable_critical_os_blocks(self):
        v = Vulnerability(vulnerability_id="CVE-1", severity="CRITICAL",
                          fixed_version="1.0.1", result_class="os-pkgs")
        assert is_blocking(v)

    def test_unfixed_critical_ignored(self):
        v = Vulnerability(vulnerability_id="CVE-1", severity="CRITICAL",
                          fixed_version="", result_class="os-pkgs")
        assert not is_blocking(v)

    def test_high_ignored(self):
        v = Vulnerability(vulnerability_id="CVE-1", severity="HIGH",
                          fixed_version="1.0.1", result_class="lang-pkgs")
        assert not is_blocking(v)

    def test_secret_class_ignored(self):
        v = Vulnerability(vulnerability_id="CVE-1", severity="CRITICAL",
                          fixed_version="1.0.1", result_class="secret")
        assert not is_blocking(v)

    def test_evaluate_gate_splits_blocking(self):
        vulns = [
            Vulnerability(vulnerability_id="A", severity="CRITICAL", fixed_version="2", result_class="os-pkgs"),
            Vulnerability(vulnerability_id="B", severity="CRITICAL", fixed_version="", result_class="os-pkgs"),
        ]
        report = evaluate_gate(IMAGE, vulns)
        assert [v.vulnerability_id for v in report.blocking] == ["A"]
        assert not report.passed


class TestScanImage:

    def test_clean_image_passes(self):
        runner = _runner(stdout=_report(_result("os-pkgs", [])))
        report = scan_image(IMAGE, runner=runner)
        assert report.passed
        assert report.image_ref == IMAGE

    def test_only_unfixed_findings_pass(self):
        runner = _runner(stdout=_report(_result("os-pkgs", [_vuln("CVE-9", fixed="")])))
        report = scan_image(IMAGE, runner=runner)
        assert report.passed
        assert len(report.vulnerabilities) == 1

    def test_fixable_critical_fails_closed(self):
        runner = _runner(stdout=_report(
            _result("os-pkgs", [_vuln("CVE-2"), _vuln("CVE-1")]),
        ))
        with pytest.raises(VulnerabilityGateError) as exc:
            scan_image(IMAGE, runner=runner)
        assert exc.value.details["vulnerabilities"] == ["CVE-1", "CVE-2"]
        assert exc.value.fatal

    def test_scanner_failure_is_fatal(self):
        runner = _runner(exit_code=1)
        with pytest.raises(VulnerabilityGateError):
            scan_image(IMAGE, runner=runner)

    def test_scanner_missing_is_fatal(self):
        runner = _runner(exit_code=-1, error="Executable not found: trivy")
        with pytest.raises(VulnerabilityGateError):
            scan_image(IMAGE, runner=runner)

    def test_unreadable_report_is_fatal(self):
        runner = _runner(stdout="not json")
        with pytest.raises(VulnerabilityGateError):
            scan_image(IMAGE, runner=runner)

    def test_timeout_forwarded(self):
        runner = _runner(stdout=_report())
        scan_image(IMAGE, timeout_seconds=42, runner=runner)
        assert runner.calls[0][1]["timeout_seconds"] == 42
