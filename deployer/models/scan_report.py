"""
Scan Report Model
=================
Findings parsed from the vulnerability scanner's JSON report.

Only the fields the publish gate needs are kept. ``fixed_version`` is
empty when the vendor has no fix, and those findings never block.
"""
from typing import List

from pydantic import BaseModel


class Vulnerability(BaseModel):
    vulnerability_id: str
    pkg_name: str = ""
    installed_version: str = ""
    fixed_version: str = ""
    severity: str = "UNKNOWN"
    result_class: str = ""
    target: str = ""

    @property
    def is_fixable(self) -> bool:
        return bool(self.fixed_version.strip())


class ScanReport(BaseModel):
    image_ref: str
    vulnerabilities: List[Vulnerability] = []
    blocking: List[Vulnerability] = []

    @property
    def passed(self) -> bool:
        return not self.blocking
