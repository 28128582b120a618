"""
Vulnerability Scanner
=====================
Publish gate for built images, backed by the Trivy CLI.

NO SCANNING LOGIC HERE. Trivy does the scanning; this module runs it with
a JSON report and applies the gate policy in Python:

GATE POLICY (fail closed):
  - Severity CRITICAL only.
  - Only os and library packages (Trivy classes os-pkgs / lang-pkgs).
  - Only findings with a fixed version — unfixed issues are ignored.
  - Any remaining finding blocks the push.

Trivy is asked to exit 0 regardless of findings so that the gate decision
lives here; a non-zero exit therefore means the scanner itself failed, and
that is also fatal.
"""
import json
import logging
from typing import Callable, List, Optional

from deployer.core.constants import SCAN_RESULT_CLASSES, SCAN_SEVERITIES, SCAN_VULN_TYPES
from deployer.core.errors import VulnerabilityGateError
from deployer.executor.command_runner import CommandResult, check_result, run_command
from deployer.models.scan_report import ScanReport, Vulnerability

logger = logging.getLogger(__name__)


def build_trivy_command(image_ref: str) -> List[str]:
    return [
        "trivy", "image",
        "--format", "json",
        "--exit-code", "0",
        "--ignore-unfixed",
        "--vuln-type", ",".join(SCAN_VULN_TYPES),
        "--severity", ",".join(SCAN_SEVERITIES),
        "--quiet",
        image_ref,
    ]


def parse_trivy_report(raw: str) -> List[Vulnerability]:
    """
    Flatten Trivy's ``Results[].Vulnerabilities[]`` into Vulnerability models.

    An empty report (no Results, or Results with null Vulnerabilities) is a
    clean scan.
    """
    data = json.loads(raw or "{}")
    vulns: List[Vulnerability] = []
    for result in data.get("Results") or []:
        target = result.get("Target", "")
        result_class = result.get("Class", "")
        for v in result.get("Vulnerabilities") or []:
            vulns.append(Vulnerability(
                vulnerability_id=v.get("VulnerabilityID", ""),
                pkg_name=v.get("PkgName", ""),
                installed_version=v.get("InstalledVersion", ""),
                fixed_version=v.get("FixedVersion", "") or "",
                severity=(v.get("Severity") or "UNKNOWN").upper(),
                result_class=result_class,
                target=target,
            ))
    return vulns


def is_blocking(vuln: Vulnerability) -> bool:
    return (
        vuln.severity in SCAN_SEVERITIES
        and vuln.result_class in SCAN_RESULT_CLASSES
        and vuln.is_fixable
    )


def evaluate_gate(image_ref: str, vulns: List[Vulnerability]) -> ScanReport:
    blocking = [v for v in vulns if is_blocking(v)]
    return ScanReport(image_ref=image_ref, vulnerabilities=vulns, blocking=blocking)


def scan_image(
    image_ref: str,
    timeout_seconds: int = 600,
    runner: Optional[Callable[..., CommandResult]] = None,
) -> ScanReport:
    """
    Scan ``image_ref`` and enforce the gate.

    Returns
    -------
    ScanReport
        Only when the gate passes.

    Raises
    ------
    VulnerabilityGateError
        If the scanner fails to run, its report is unreadable, or any
        blocking finding is present.
    """
    runner = runner or run_command
    result = runner(build_trivy_command(image_ref), timeout_seconds=timeout_seconds)
    check_result(result, VulnerabilityGateError, "Vulnerability scanner failed")

    try:
        vulns = parse_trivy_report(result.stdout)
    except (json.JSONDecodeError, AttributeError) as e:
        raise VulnerabilityGateError(
            "Vulnerability scanner produced an unreadable report",
            details={"image": image_ref},
        ) from e

    report = evaluate_gate(image_ref, vulns)
    logger.info(
        "Scan of %s: %d finding(s), %d blocking",
        image_ref, len(report.vulnerabilities), len(report.blocking),
    )

    if not report.passed:
        ids = sorted({v.vulnerability_id for v in report.blocking})
        for v in report.blocking:
            logger.error(
                "BLOCKING %s in %s %s (fixed in %s)",
                v.vulnerability_id, v.pkg_name, v.installed_version, v.fixed_version,
            )
        raise VulnerabilityGateError(
            f"{len(report.blocking)} fixable CRITICAL vulnerabilit"
            f"{'y' if len(report.blocking) == 1 else 'ies'} found in {image_ref}",
            details={"image": image_ref, "vulnerabilities": ids},
        )

    return report
