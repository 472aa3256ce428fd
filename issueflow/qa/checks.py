"""
QA check kinds and what each one is sensitive to.

CHECK_CONFIG_FILES feed the per-kind config hash. CHECK_INVALIDATION_PATTERNS
match changed paths that make a cached verdict untrustworthy even when the
hashes agree. GLOBAL_INVALIDATION_FILES affect every kind.
"""

import re

CHECK_TYPES = [
    "type-safety",
    "deleted-tests",
    "scope",
    "size",
    "security",
    "semgrep",
    "build",
    "tests",
]

# Dependency locks and shared build config
GLOBAL_INVALIDATION_FILES = [
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "bun.lockb",
    "poetry.lock",
    "uv.lock",
    "Pipfile.lock",
    "tsconfig.json",
    "pyproject.toml",
]

CHECK_CONFIG_FILES: dict[str, list[str]] = {
    "type-safety": ["tsconfig.json", "package.json", "mypy.ini", "pyproject.toml"],
    "deleted-tests": ["package.json", "pyproject.toml"],
    "scope": [],
    "size": [],
    "security": ["package.json", ".semgrep.yml", "pyproject.toml"],
    "semgrep": [".semgrep.yml", ".semgrep.yaml", "semgrep.yml"],
    "build": ["package.json", "tsconfig.json", "pyproject.toml", "setup.cfg"],
    "tests": ["package.json", "vitest.config.ts", "jest.config.js", "pytest.ini", "pyproject.toml"],
}

_TEST_FILE = r"(\.(test|spec)\.[cm]?[jt]sx?$|(^|/)test_[^/]*\.py$|_test\.py$|(^|/)(__tests__|tests?)/)"
_SOURCE_FILE = r"\.([cm]?[jt]sx?|py|pyi)$"

CHECK_INVALIDATION_PATTERNS: dict[str, list[re.Pattern]] = {
    "type-safety": [re.compile(r"\.(tsx?|pyi?)$")],
    "deleted-tests": [re.compile(_TEST_FILE)],
    "scope": [],
    "size": [],
    "security": [re.compile(_SOURCE_FILE)],
    "semgrep": [re.compile(_SOURCE_FILE)],
    "build": [re.compile(_SOURCE_FILE)],
    "tests": [re.compile(_TEST_FILE), re.compile(_SOURCE_FILE)],
}


def is_check_type(name: str) -> bool:
    return name in CHECK_TYPES


def touches_global_files(paths: list[str]) -> list[str]:
    """Changed paths whose file name is a global invalidation file."""
    names = set(GLOBAL_INVALIDATION_FILES)
    return [p for p in paths if p.rsplit("/", 1)[-1] in names]


def matching_paths(check_type: str, paths: list[str]) -> list[str]:
    patterns = CHECK_INVALIDATION_PATTERNS.get(check_type, [])
    return [p for p in paths if any(pattern.search(p) for pattern in patterns)]
