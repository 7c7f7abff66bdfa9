"""Security audit category scanners.

Scanners are synchronous and run in worker threads. Each checks the
context's cancel event between files and raises ScanCancelled when set, so
an abandoned scan stops promptly and closes its file handles.

Categories:
- secrets: hardcoded credentials and private keys
- input_handling: dynamic evaluation, unsafe deserialization, shell injection
- cryptography: weak hashes, non-cryptographic randomness
- dependencies: known-vulnerable or unpinned requirements
- configuration: engine settings that weaken protection
- file_permissions: world-writable files and exposed key material
"""

from __future__ import annotations

import json
import logging
import os
import re
import stat
import threading
import tomllib
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from hostguard.audit.models import Finding, FindingSeverity
from hostguard.health.config import HealthConfig
from hostguard.ratelimit.config import RateLimitConfig

logger = logging.getLogger(__name__)

SKIP_DIRS = frozenset(
    {".git", ".hg", ".svn", "__pycache__", ".venv", "venv", "node_modules", ".mypy_cache",
     ".pytest_cache", ".ruff_cache", ".tox", "dist", "build"}
)
TEXT_SUFFIXES = frozenset(
    {".py", ".js", ".ts", ".jsx", ".tsx", ".json", ".yaml", ".yml", ".toml", ".ini", ".cfg",
     ".env", ".sh", ".conf"}
)
SENSITIVE_SUFFIXES = frozenset({".pem", ".key", ".p12", ".pfx", ".env"})

# Files larger than this are not pattern-scanned
MAX_FILE_BYTES = 2 * 1024 * 1024


class ScanCancelled(Exception):
    """Raised inside a scanner when its audit was cancelled or timed out."""


@dataclass
class ScanContext:
    """Inputs shared by every scanner in one audit run."""

    root: Path
    cancel_event: threading.Event = field(default_factory=threading.Event)
    rate_limit_config: RateLimitConfig | None = None
    health_config: HealthConfig | None = None
    debug: bool = False

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise ScanCancelled("scan cancelled")


class CategoryScanner(Protocol):
    """Protocol for audit category scanners."""

    name: str

    def scan(self, context: ScanContext) -> list[Finding]:
        """Scan and return findings. May raise; the engine marks the category incomplete."""
        ...


def iter_files(context: ScanContext, suffixes: frozenset[str] | None = None) -> Iterator[Path]:
    """Walk the scan root in sorted order, skipping vendored and cache directories."""
    for dirpath, dirnames, filenames in os.walk(context.root):
        context.check_cancelled()
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            if suffixes is None or path.suffix in suffixes or filename in suffixes:
                context.check_cancelled()
                yield path


def relative_location(context: ScanContext, path: Path) -> str:
    try:
        return path.relative_to(context.root).as_posix()
    except ValueError:
        return path.as_posix()


@dataclass(frozen=True)
class PatternRule:
    rule_id: str
    pattern: re.Pattern[str]
    severity: FindingSeverity
    description: str
    recommendation: str


def _rule(
    rule_id: str, pattern: str, severity: FindingSeverity, description: str, recommendation: str
) -> PatternRule:
    return PatternRule(
        rule_id, re.compile(pattern, re.IGNORECASE), severity, description, recommendation
    )


SECRET_RULES = (
    _rule(
        "hardcoded_password",
        r"""(password|passwd|pwd)\s*[=:]\s*['"][^'"\s]{8,}['"]""",
        FindingSeverity.CRITICAL,
        "Hardcoded password",
        "Load credentials from the environment or a secret store",
    ),
    _rule(
        "hardcoded_api_key",
        r"""(api[_-]?key|apikey)\s*[=:]\s*['"][^'"\s]{20,}['"]""",
        FindingSeverity.CRITICAL,
        "Hardcoded API key",
        "Load API keys from the environment or a secret store",
    ),
    _rule(
        "hardcoded_token",
        r"""(secret|token)\s*[=:]\s*['"][^'"\s]{20,}['"]""",
        FindingSeverity.HIGH,
        "Hardcoded secret or token",
        "Move secrets out of source control and rotate the exposed value",
    ),
    _rule(
        "private_key",
        r"-----BEGIN\s+(RSA\s+|EC\s+|OPENSSH\s+)?PRIVATE\s+KEY-----",
        FindingSeverity.CRITICAL,
        "Private key committed to source",
        "Remove the key from the tree and rotate it",
    ),
)

INPUT_HANDLING_RULES = (
    _rule(
        "dynamic_eval",
        r"(?<![\w.])eval\s*\(",
        FindingSeverity.HIGH,
        "Dynamic code evaluation",
        "Parse input explicitly instead of evaluating it",
    ),
    _rule(
        "dynamic_exec",
        r"(?<![\w.])exec\s*\(",
        FindingSeverity.HIGH,
        "Dynamic code execution",
        "Remove dynamic execution of generated code",
    ),
    _rule(
        "unsafe_pickle",
        r"pickle\.loads?\s*\(",
        FindingSeverity.HIGH,
        "Deserialization of pickled data",
        "Use a data-only format such as JSON for untrusted input",
    ),
    _rule(
        "unsafe_yaml",
        r"yaml\.load\s*\((?![^)]*SafeLoader)",
        FindingSeverity.HIGH,
        "YAML loaded without a safe loader",
        "Use yaml.safe_load",
    ),
    _rule(
        "shell_injection",
        r"shell\s*=\s*True",
        FindingSeverity.HIGH,
        "Subprocess invoked through the shell",
        "Pass an argument list and keep shell disabled",
    ),
    _rule(
        "os_system",
        r"os\.system\s*\(",
        FindingSeverity.MEDIUM,
        "Command run through os.system",
        "Use subprocess with an argument list",
    ),
    _rule(
        "inner_html",
        r"\.innerHTML\s*=",
        FindingSeverity.MEDIUM,
        "Direct HTML injection",
        "Use textContent or a sanitizer",
    ),
    _rule(
        "document_write",
        r"document\.write\s*\(",
        FindingSeverity.MEDIUM,
        "document.write usage",
        "Build DOM nodes instead of writing markup",
    ),
)

CRYPTO_RULES = (
    _rule(
        "weak_hash",
        r"\b(md5|sha1)\b",
        FindingSeverity.MEDIUM,
        "Weak hash algorithm",
        "Use SHA-256 or stronger, or a password hash such as bcrypt for credentials",
    ),
    _rule(
        "insecure_random",
        r"\brandom\.(random|randint|choice|randrange)\s*\(|Math\.random\s*\(",
        FindingSeverity.LOW,
        "Non-cryptographic random number generator",
        "Use the secrets module for tokens and keys",
    ),
    _rule(
        "deprecated_cipher",
        r"createCipher\s*\(",
        FindingSeverity.MEDIUM,
        "Deprecated cipher construction",
        "Use an authenticated cipher such as AES-256-GCM with explicit IVs",
    ),
)


class PatternScanner:
    """Line-oriented regex scanner over text files."""

    def __init__(self, name: str, rules: tuple[PatternRule, ...]) -> None:
        self.name = name
        self._rules = rules

    def scan(self, context: ScanContext) -> list[Finding]:
        findings: list[Finding] = []
        for path in iter_files(context, TEXT_SUFFIXES):
            try:
                if path.stat().st_size > MAX_FILE_BYTES:
                    continue
                with open(path, encoding="utf-8", errors="ignore") as f:
                    lines = f.readlines()
            except OSError as e:
                logger.debug(f"Skipping unreadable file {path}: {e}")
                continue

            location = relative_location(context, path)
            for lineno, line in enumerate(lines, start=1):
                for rule in self._rules:
                    if rule.pattern.search(line):
                        findings.append(
                            Finding(
                                category=self.name,
                                rule_id=rule.rule_id,
                                severity=rule.severity,
                                description=rule.description,
                                location=location,
                                line=lineno,
                                recommendation=rule.recommendation,
                            )
                        )
        return findings


# name -> (severity, reason)
KNOWN_VULNERABLE_PACKAGES: dict[str, tuple[FindingSeverity, str]] = {
    "pycrypto": (FindingSeverity.HIGH, "unmaintained with known vulnerabilities"),
    "node-serialize": (FindingSeverity.CRITICAL, "remote code execution via deserialization"),
    "request": (FindingSeverity.MEDIUM, "deprecated with known vulnerabilities"),
    "jquery": (FindingSeverity.MEDIUM, "older releases have known XSS issues"),
    "lodash": (FindingSeverity.MEDIUM, "older releases have prototype pollution issues"),
    "marked": (FindingSeverity.MEDIUM, "older releases have known XSS issues"),
}

_REQUIREMENT = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._\-]*)(\[[^\]]*\])?\s*(.*)$")


def parse_requirement(line: str) -> tuple[str, str] | None:
    """Split a requirement line into (normalized name, version spec)."""
    line = line.split("#", 1)[0].split(";", 1)[0].strip()
    if not line or line.startswith("-"):
        return None
    match = _REQUIREMENT.match(line)
    if match is None:
        return None
    return match.group(1).lower().replace("_", "-"), match.group(3).strip()


class DependencyScanner:
    """Checks declared dependencies in requirements files, pyproject.toml and package.json."""

    name = "dependencies"

    def scan(self, context: ScanContext) -> list[Finding]:
        findings: list[Finding] = []
        for path in iter_files(context):
            name = path.name
            if name.startswith("requirements") and name.endswith(".txt"):
                deps = self._from_requirements(path)
            elif name == "pyproject.toml":
                deps = self._from_pyproject(path)
            elif name == "package.json":
                deps = self._from_package_json(path)
            else:
                continue

            location = relative_location(context, path)
            for dep_name, spec in deps:
                findings.extend(self._check(dep_name, spec, location))
        return findings

    def _check(self, dep_name: str, spec: str, location: str) -> list[Finding]:
        results = []
        known = KNOWN_VULNERABLE_PACKAGES.get(dep_name)
        if known is not None:
            severity, reason = known
            results.append(
                Finding(
                    category=self.name,
                    rule_id="known_vulnerable_package",
                    severity=severity,
                    description=f"Package {dep_name} is {reason}",
                    location=location,
                    recommendation=f"Replace or upgrade {dep_name}",
                )
            )
        if not spec or spec == "*":
            results.append(
                Finding(
                    category=self.name,
                    rule_id="unpinned_dependency",
                    severity=FindingSeverity.LOW,
                    description=f"Dependency {dep_name} has no version constraint",
                    location=location,
                    recommendation="Constrain dependency versions for reproducible builds",
                )
            )
        return results

    @staticmethod
    def _from_requirements(path: Path) -> list[tuple[str, str]]:
        with open(path, encoding="utf-8", errors="ignore") as f:
            return [req for req in (parse_requirement(line) for line in f) if req is not None]

    @staticmethod
    def _from_pyproject(path: Path) -> list[tuple[str, str]]:
        with open(path, "rb") as f:
            data = tomllib.load(f)
        project = data.get("project", {})
        lines = list(project.get("dependencies", []))
        for extra in project.get("optional-dependencies", {}).values():
            lines.extend(extra)
        return [req for req in (parse_requirement(line) for line in lines) if req is not None]

    @staticmethod
    def _from_package_json(path: Path) -> list[tuple[str, str]]:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        deps: dict[str, str] = {}
        deps.update(data.get("dependencies", {}))
        deps.update(data.get("devDependencies", {}))
        return [(name.lower(), str(spec).strip()) for name, spec in sorted(deps.items())]


class ConfigurationScanner:
    """Checks the engine's own active configuration."""

    name = "configuration"

    def scan(self, context: ScanContext) -> list[Finding]:
        context.check_cancelled()
        findings: list[Finding] = []

        def add(rule_id: str, severity: FindingSeverity, description: str, recommendation: str) -> None:
            findings.append(
                Finding(
                    category=self.name,
                    rule_id=rule_id,
                    severity=severity,
                    description=description,
                    location="engine",
                    recommendation=recommendation,
                )
            )

        rl = context.rate_limit_config
        if rl is None:
            add(
                "rate_limiter_missing",
                FindingSeverity.HIGH,
                "No rate limiter configured",
                "Initialize the rate limiter before serving traffic",
            )
        else:
            if not rl.enabled:
                add(
                    "rate_limiting_disabled",
                    FindingSeverity.HIGH,
                    "Rate limiting is disabled",
                    "Enable rate limiting to prevent abuse",
                )
            if not rl.suspicion.enabled:
                add(
                    "abuse_detection_disabled",
                    FindingSeverity.MEDIUM,
                    "Suspicious activity detection is disabled",
                    "Enable suspicion scoring to auto-block abusive clients",
                )
            if any(entry in ("*", "0.0.0.0", "::") for entry in rl.allowlist):
                add(
                    "wildcard_allowlist",
                    FindingSeverity.HIGH,
                    "Allowlist contains a wildcard address",
                    "List individual trusted client addresses",
                )
            if rl.global_limit.max_requests > 10000:
                add(
                    "permissive_global_limit",
                    FindingSeverity.LOW,
                    f"Global limit allows {rl.global_limit.max_requests} requests per window",
                    "Lower the global request limit",
                )

        hc = context.health_config
        if hc is not None and not hc.checks:
            add(
                "no_health_checks",
                FindingSeverity.MEDIUM,
                "No health checks configured",
                "Configure thresholds for system metrics",
            )

        if context.debug:
            add(
                "debug_enabled",
                FindingSeverity.MEDIUM,
                "Debug mode is enabled",
                "Disable debug mode in production",
            )

        return findings


class FilePermissionScanner:
    """Flags world-writable files and group/world-readable key material (POSIX only)."""

    name = "file_permissions"

    def scan(self, context: ScanContext) -> list[Finding]:
        if os.name != "posix":
            return []

        findings: list[Finding] = []
        for path in iter_files(context):
            try:
                mode = path.lstat().st_mode
            except OSError:
                continue
            if stat.S_ISLNK(mode):
                continue

            location = relative_location(context, path)
            if mode & stat.S_IWOTH:
                findings.append(
                    Finding(
                        category=self.name,
                        rule_id="world_writable",
                        severity=FindingSeverity.HIGH,
                        description=f"World-writable file (mode {stat.S_IMODE(mode):o})",
                        location=location,
                        recommendation="Change to more restrictive permissions (644 or 600)",
                    )
                )
            if (path.suffix in SENSITIVE_SUFFIXES or path.name in SENSITIVE_SUFFIXES) and mode & (
                stat.S_IRGRP | stat.S_IROTH
            ):
                findings.append(
                    Finding(
                        category=self.name,
                        rule_id="exposed_key_material",
                        severity=FindingSeverity.MEDIUM,
                        description=f"Sensitive file readable by others (mode {stat.S_IMODE(mode):o})",
                        location=location,
                        recommendation="Restrict to owner-only access (600)",
                    )
                )
        return findings


def default_scanners() -> list[CategoryScanner]:
    return [
        PatternScanner("secrets", SECRET_RULES),
        PatternScanner("input_handling", INPUT_HANDLING_RULES),
        PatternScanner("cryptography", CRYPTO_RULES),
        DependencyScanner(),
        ConfigurationScanner(),
        FilePermissionScanner(),
    ]
