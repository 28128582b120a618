"""
Constants
Centralised storage for stage names, artifact names and scanner policy.
"""
STAGE_BUILD = "build"
STAGE_QUALITY_GATE = "quality_gate"
STAGE_DEPLOY = "deploy"
STAGE_ORDER = [STAGE_BUILD, STAGE_QUALITY_GATE, STAGE_DEPLOY]

COVERAGE_ARTIFACT_NAME = "coverage-report"
COVERAGE_FILENAME = "coverage.xml"

REVISION_TAG_LENGTH = 7

SCAN_SEVERITIES = ["CRITICAL"]
SCAN_VULN_TYPES = ["os", "library"]
# Trivy result classes that correspond to the os / library vuln types
SCAN_RESULT_CLASSES = {"os-pkgs", "lang-pkgs"}

TF_PLAN_FILE = "tfplan.binary"
TF_BACKEND_FILE = "backend.tf"

NULL_SHA = "0" * 40
