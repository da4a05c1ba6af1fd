"""
Heuristic content-risk scoring.

The scanner is an advisory triage step, not a security boundary: it assigns a
numeric score to source text from the pattern table and maps that score to a
clean/warn/reject classification.
"""

from collections.abc import Iterable, Mapping
from pathlib import PurePosixPath
import re

from ..models import (
    Classification,
    RiskFinding,
    RiskTier,
    ScanOptions,
    ScanResult,
)
from .patterns import RISK_PATTERNS, RiskPattern

HIGH_RISK_WEIGHT = 50
MEDIUM_RISK_WEIGHT = 10
TRUSTED_MEDIUM_RISK_WEIGHT = 4
LOW_RISK_WEIGHT = 2

# Scores of recognized test code are floor-divided by this.
TEST_CODE_DIVISOR = 2

WARN_THRESHOLD = 2
DEFAULT_REJECT_THRESHOLD = 30
SCOPED_REJECT_THRESHOLD = 60

TEST_CODE_MARKERS: tuple[str, ...] = (
    "import pytest",
    "from pytest",
    "@pytest.",
    "import unittest",
    "from unittest",
    "unittest.TestCase",
    "def test_",
)
_JS_TEST_CALL = re.compile(r"(?<![\w.$])(?:describe|it)\s*\(\s*[\"'`]")

SCRIPT_EXTENSIONS: frozenset[str] = frozenset(
    {".py", ".pyw", ".js", ".mjs", ".cjs", ".ts", ".sh", ".bash", ".ps1", ".bat", ".cmd"}
)


def looks_like_test_code(text: str) -> bool:
    if any(marker in text for marker in TEST_CODE_MARKERS):
        return True
    return _JS_TEST_CALL.search(text) is not None


def looks_scoped(package_name: str | None) -> bool:
    """True for '@scope/name', 'org/name' and dotted namespace names."""
    if not package_name:
        return False
    return (
        package_name.startswith("@")
        or "/" in package_name
        or "." in package_name.strip(".")
    )


def reject_threshold_for(options: ScanOptions) -> int:
    if options.reject_threshold is not None:
        return options.reject_threshold
    if looks_scoped(options.package_name):
        return SCOPED_REJECT_THRESHOLD
    return DEFAULT_REJECT_THRESHOLD


def _weight(pattern: RiskPattern, trusted: bool) -> int | None:
    """Returns the score weight for a match, or None when it is ignored."""
    if pattern.tier is RiskTier.HIGH:
        return HIGH_RISK_WEIGHT
    if pattern.tier is RiskTier.MEDIUM:
        return TRUSTED_MEDIUM_RISK_WEIGHT if trusted else MEDIUM_RISK_WEIGHT
    return None if trusted else LOW_RISK_WEIGHT


def scan(text: str, options: ScanOptions | None = None) -> ScanResult:
    """
    Scores `text` against every row of the pattern table.

    Each matching pattern contributes one finding and its weight once, so
    repeated occurrences of the same construct do not compound. Any high-tier
    finding classifies the text as `reject` whatever the trust context.
    """
    options = options or ScanOptions()
    trusted = options.is_trusted

    findings: list[RiskFinding] = []
    score = 0
    for pattern in RISK_PATTERNS:
        if not pattern.regex.search(text):
            continue
        weight = _weight(pattern, trusted)
        if weight is None:
            continue
        findings.append(
            RiskFinding(
                pattern_id=pattern.pattern_id,
                description=pattern.description,
                tier=pattern.tier,
            )
        )
        score += weight

    if score and looks_like_test_code(text):
        score //= TEST_CODE_DIVISOR

    has_high = any(f.tier is RiskTier.HIGH for f in findings)
    if has_high or score >= reject_threshold_for(options):
        classification = Classification.REJECT
    elif score >= WARN_THRESHOLD:
        classification = Classification.WARN
    else:
        classification = Classification.CLEAN

    return ScanResult(
        risk_score=score,
        findings=tuple(findings),
        classification=classification,
    )


def is_script_file(path: str) -> bool:
    return PurePosixPath(path).suffix.lower() in SCRIPT_EXTENSIONS


def decode_text(payload: bytes) -> str | None:
    """Returns the payload as text, or None for binary content."""
    if b"\x00" in payload:
        return None
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError:
        return None


def scan_files(
    files: Mapping[str, bytes],
    options: ScanOptions | None = None,
    scripts_only: bool = False,
) -> dict[str, ScanResult]:
    """Scans every text entry (or only script entries) of a file mapping."""
    results: dict[str, ScanResult] = {}
    for path, payload in files.items():
        if scripts_only and not is_script_file(path):
            continue
        text = decode_text(payload)
        if text is None:
            continue
        results[path] = scan(text, options)
    return results


def worst_classification(results: Iterable[ScanResult]) -> Classification:
    worst = Classification.CLEAN
    for result in results:
        if result.classification.rank > worst.rank:
            worst = result.classification
    return worst
