"""
The declarative risk pattern table consumed by the scanner engine.

Rows are ordered high -> medium -> low. Patterns target Python sources first,
plus the JavaScript, HTML and shell shapes that show up in vendored assets.
"""

import re

from attrs import define

from ..models import RiskTier


@define(frozen=True, slots=True)
class RiskPattern:
    pattern_id: str
    tier: RiskTier
    regex: re.Pattern[str]
    description: str


def _row(pattern_id: str, tier: RiskTier, expression: str, description: str) -> RiskPattern:
    return RiskPattern(
        pattern_id=pattern_id,
        tier=tier,
        regex=re.compile(expression, re.IGNORECASE),
        description=description,
    )


_DECODERS = (
    r"base64\.b(?:16|32|64|85)decode|codecs\.decode|zlib\.decompress|marshal\.loads"
    r"|bytes\.fromhex|atob|Buffer\.from"
)
_SECRET_NAMES = r"token|secret|passw(?:or)?d|api_?key|credential|private_?key"

HIGH_RISK_PATTERNS: tuple[RiskPattern, ...] = (
    _row(
        "obfuscated-eval",
        RiskTier.HIGH,
        rf"\b(?:exec|eval)\s*\(\s*(?:compile\s*\(\s*)?(?:{_DECODERS})\s*\(",
        "Dynamic evaluation of decoded or decompressed data",
    ),
    _row(
        "remote-code-exec",
        RiskTier.HIGH,
        r"\b(?:exec|eval)\s*\([^)\n]*\b(?:requests\.get|urlopen|httpx\.get|fetch)\s*\(",
        "Dynamic evaluation of code fetched from the network",
    ),
    _row(
        "remote-script-tag",
        RiskTier.HIGH,
        r"<script[^>]+src\s*=\s*[\"']?(?:https?:)?//",
        "Embedded script loaded from an external host",
    ),
    _row(
        "env-exfiltration",
        RiskTier.HIGH,
        r"\b(?:requests\.(?:post|put)|httpx\.(?:post|put)|urlopen|fetch)\s*\([^)\n]*"
        r"\b(?:os\.environ|os\.getenv|process\.env)\b",
        "Environment contents passed to an outbound network call",
    ),
    _row(
        "credential-url-interpolation",
        RiskTier.HIGH,
        rf"(?:\bf[\"']https?://[^\"'\n]*\{{[^}}\n]*(?:{_SECRET_NAMES})"
        rf"|`https?://[^`\n]*\$\{{[^}}\n]*(?:{_SECRET_NAMES}))",
        "Credential-named value interpolated into a URL",
    ),
    _row(
        "interactive-shell",
        RiskTier.HIGH,
        r"\bpty\.spawn\s*\(\s*[\"'](?:/bin/)?(?:ba|z)?sh\b",
        "Interactive shell spawned from library code",
    ),
)

MEDIUM_RISK_PATTERNS: tuple[RiskPattern, ...] = (
    _row(
        "eval-long-literal",
        RiskTier.MEDIUM,
        r"\b(?:exec|eval)\s*\(\s*[rbu]?(?:\"[^\"\n]{80,}\"|'[^'\n]{80,}')",
        "Dynamic evaluation of a long string literal",
    ),
    _row(
        "dynamic-system-import",
        RiskTier.MEDIUM,
        r"\b__import__\s*\(\s*[\"'](?:os|subprocess|socket|ctypes|pty)[\"']",
        "Dynamic import of a system module",
    ),
    _row(
        "html-injection",
        RiskTier.MEDIUM,
        r"\.(?:inner|outer)HTML\s*=|\bdocument\.write(?:ln)?\s*\(",
        "Dynamic content injection into a document",
    ),
    _row(
        "spawn-with-fetch",
        RiskTier.MEDIUM,
        r"\b(?:subprocess\.\w+|os\.system|os\.popen|execSync|exec)\s*\([^)\n]*\b(?:curl|wget)\b",
        "Process spawning combined with network fetch tooling",
    ),
    _row(
        "unpickling",
        RiskTier.MEDIUM,
        r"\b(?:pickle|cPickle|dill)\.loads?\s*\(",
        "Deserialization of pickled data",
    ),
    _row(
        "builtins-patching",
        RiskTier.MEDIUM,
        r"\bsetattr\s*\(\s*builtins\b|\bbuiltins\.\w+\s*=[^=]",
        "Runtime replacement of Python builtins",
    ),
)

LOW_RISK_PATTERNS: tuple[RiskPattern, ...] = (
    _row(
        "process-spawn",
        RiskTier.LOW,
        r"\bsubprocess\.(?:run|call|check_call|check_output|Popen)\b"
        r"|\bos\.(?:system|popen|exec[lv]p?e?|spawn[lv]p?e?)\b|\bchild_process\b",
        "Process spawning",
    ),
    _row(
        "file-append",
        RiskTier.LOW,
        r"\bopen\s*\([^)\n]*,\s*(?:mode\s*=\s*)?[\"']a[bt+]?[\"']|\bappendFile(?:Sync)?\s*\(",
        "File append operation",
    ),
    _row(
        "env-access",
        RiskTier.LOW,
        r"\bos\.environ\b|\bos\.getenv\s*\(|\bprocess\.env\b",
        "Environment variable access",
    ),
    _row(
        "crypto-primitive",
        RiskTier.LOW,
        r"\bhashlib\.|\bhmac\.|\bcryptography\.hazmat\b|\bCrypto\.Cipher\b"
        r"|\bcrypto\.create(?:Cipher|Decipher|Hash|Hmac)",
        "Low-level cryptographic primitive",
    ),
)

RISK_PATTERNS: tuple[RiskPattern, ...] = (
    HIGH_RISK_PATTERNS + MEDIUM_RISK_PATTERNS + LOW_RISK_PATTERNS
)
