"""
The `scanner` sub-package contains the advisory content-risk scanner.

This includes:
- The declarative table of risk patterns, grouped into high, medium and low tiers.
- The scoring engine that turns pattern matches into a clean/warn/reject decision.
"""

from .engine import (
    is_script_file,
    looks_like_test_code,
    looks_scoped,
    scan,
    scan_files,
    worst_classification,
)
from .patterns import RISK_PATTERNS, RiskPattern

__all__ = [
    "RISK_PATTERNS",
    "RiskPattern",
    "is_script_file",
    "looks_like_test_code",
    "looks_scoped",
    "scan",
    "scan_files",
    "worst_classification",
]
