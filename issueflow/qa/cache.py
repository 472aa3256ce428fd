"""
QA result cache.

Memoizes verdicts of expensive checks in .issueflow/cache/qa/cache.json.
An entry is reused only while both of these still match and its ttl has not
run out:
- the diff hash (the working tree diffed against the merge base with the
  base branch)
- the config hash (the config files that check kind reads)

The cache is advisory. A corrupt or off-schema document is discarded and
rebuilt, and a diff that cannot be computed produces a random hash so
lookups miss instead of failing.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from issueflow.git.diff import get_changed_file_names, get_diff_text, get_merge_base
from issueflow.lib import constants
from issueflow.lib.fileio import write_json_atomic
from issueflow.lib.validate import ValidationError, load_json_document, validate_before_write
from issueflow.qa.checks import (
    CHECK_CONFIG_FILES,
    CHECK_TYPES,
    matching_paths,
    touches_global_files,
)
from issueflow.workflow.state_schema import now_iso, parse_iso

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60
HASH_LENGTH = 16

MISS_NOT_FOUND = "not-found"
MISS_EXPIRED = "expired"
MISS_HASH_MISMATCH = "hash-mismatch"


@dataclass
class CheckResult:
    passed: bool
    message: str
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict:
        data = {"passed": self.passed, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CheckResult":
        return cls(passed=data["passed"], message=data["message"], details=data.get("details"))


@dataclass
class CacheLookup:
    hit: bool
    result: CheckResult | None = None
    is_stale: bool = False
    miss_reason: str | None = None


@dataclass
class CacheStatus:
    check_type: str
    cached: bool
    valid: bool
    passed: bool | None = None
    cached_at: str | None = None
    miss_reason: str | None = None


def default_cache_path(project_dir: Path) -> Path:
    return project_dir.joinpath(constants.DATA_DIR_NAME, *constants.QA_CACHE_RELPATH)


def _short_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()[:HASH_LENGTH]


def _empty_document() -> dict:
    return {"version": constants.SCHEMA_VERSION, "last_updated": now_iso(), "checks": {}}


class QACache:
    """Cache of QA verdicts for one project directory."""

    def __init__(
        self,
        project_dir: Path,
        base_branch: str = "main",
        cache_path: Path | None = None,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        verbose: bool = False,
    ):
        self.project_dir = Path(project_dir)
        self.base_branch = base_branch
        self.cache_path = Path(cache_path) if cache_path else default_cache_path(self.project_dir)
        self.default_ttl = default_ttl
        self.verbose = verbose
        self._document: dict | None = None

    def _log(self, message: str) -> None:
        if self.verbose:
            logger.info(f"[qa-cache] {message}")
        else:
            logger.debug(f"[qa-cache] {message}")

    @staticmethod
    def _require_check_type(check_type: str) -> None:
        if check_type not in CHECK_TYPES:
            raise ValueError(f"Unknown check type: {check_type}")

    # -- hashing -------------------------------------------------------------

    def _merge_base(self) -> str | None:
        return get_merge_base(self.project_dir, self.base_branch)

    def compute_diff_hash(self) -> str:
        """Hash of the working-tree diff against the merge base; random on git failure."""
        merge_base = self._merge_base()
        diff = get_diff_text(self.project_dir, merge_base) if merge_base else None
        if diff is None:
            self._log("diff unavailable, using a one-off hash")
            return _short_hash(f"unavailable:{secrets.token_hex(16)}".encode())
        return _short_hash(diff.encode("utf-8"))

    def compute_config_hash(self, check_type: str) -> str:
        """Hash of the config files the check kind depends on."""
        self._require_check_type(check_type)
        digest = hashlib.sha256(check_type.encode("utf-8"))
        for name in CHECK_CONFIG_FILES.get(check_type, []):
            digest.update(b"\0" + name.encode("utf-8") + b"\0")
            try:
                digest.update((self.project_dir / name).read_bytes())
            except OSError:
                digest.update(b"<missing>")
        return digest.hexdigest()[:HASH_LENGTH]

    def get_changed_files(self) -> list[str] | None:
        """Paths changed since the merge base, or None when git cannot say."""
        merge_base = self._merge_base()
        if merge_base is None:
            return None
        return get_changed_file_names(self.project_dir, merge_base)

    # -- document ------------------------------------------------------------

    def _load(self) -> dict:
        if self._document is None:
            if not self.cache_path.exists():
                self._document = _empty_document()
            else:
                try:
                    self._document = load_json_document(self.cache_path, "qa-cache")
                except ValidationError as e:
                    logger.warning(f"[qa-cache] Discarding unreadable cache {self.cache_path}: {e}")
                    self._document = _empty_document()
        return self._document

    def _save(self, document: dict) -> None:
        document["last_updated"] = now_iso()
        validate_before_write(document, "qa-cache", self.cache_path)
        write_json_atomic(self.cache_path, document)
        self._document = document

    def clear_memory_cache(self) -> None:
        """Drop the in-memory document so the next call re-reads disk."""
        self._document = None

    # -- lookups -------------------------------------------------------------

    def _evaluate(self, check_type: str, entry: dict | None, diff_hash: str) -> CacheLookup:
        if entry is None:
            return CacheLookup(hit=False, miss_reason=MISS_NOT_FOUND)

        result = CheckResult.from_dict(entry["result"])
        try:
            age = (datetime.now(timezone.utc) - parse_iso(entry["cached_at"])).total_seconds()
        except ValueError:
            age = float("inf")
        if age >= entry["ttl_seconds"]:
            return CacheLookup(hit=False, result=result, is_stale=True, miss_reason=MISS_EXPIRED)

        if entry["diff_hash"] != diff_hash or entry["config_hash"] != self.compute_config_hash(check_type):
            return CacheLookup(hit=False, result=result, is_stale=True, miss_reason=MISS_HASH_MISMATCH)

        return CacheLookup(hit=True, result=result)

    def get(self, check_type: str) -> CacheLookup:
        self._require_check_type(check_type)
        entry = self._load()["checks"].get(check_type)
        lookup = self._evaluate(check_type, entry, self.compute_diff_hash() if entry else "")
        if lookup.hit:
            self._log(f"{check_type}: hit")
        else:
            self._log(f"{check_type}: miss ({lookup.miss_reason})")
        return lookup

    def set(self, check_type: str, result: CheckResult, ttl_seconds: float | None = None) -> None:
        """Store a verdict against the current hashes, replacing any previous entry."""
        self._require_check_type(check_type)
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

        document = self._load()
        document["checks"][check_type] = {
            "check_type": check_type,
            "diff_hash": self.compute_diff_hash(),
            "config_hash": self.compute_config_hash(check_type),
            "cached_at": now_iso(),
            "ttl_seconds": ttl,
            "result": result.to_dict(),
        }
        self._save(document)
        self._log(f"{check_type}: stored (passed={result.passed})")

    def clear(self, check_type: str) -> bool:
        """Remove one entry. Returns False if there was nothing to remove."""
        self._require_check_type(check_type)
        document = self._load()
        if check_type not in document["checks"]:
            return False
        del document["checks"][check_type]
        self._save(document)
        self._log(f"{check_type}: cleared")
        return True

    def clear_all(self) -> None:
        self._save(_empty_document())
        self._log("all entries cleared")

    def get_status(self) -> dict[str, CacheStatus]:
        """Status of every known check kind, sharing one diff hash computation."""
        checks = self._load()["checks"]
        diff_hash = self.compute_diff_hash() if checks else ""
        statuses = {}
        for check_type in CHECK_TYPES:
            entry = checks.get(check_type)
            lookup = self._evaluate(check_type, entry, diff_hash)
            statuses[check_type] = CacheStatus(
                check_type=check_type,
                cached=entry is not None,
                valid=lookup.hit,
                passed=lookup.result.passed if lookup.result else None,
                cached_at=entry["cached_at"] if entry else None,
                miss_reason=lookup.miss_reason,
            )
        return statuses

    # -- change-based invalidation -------------------------------------------

    def check_global_invalidation(self) -> bool:
        """True when lock files or shared build config changed since the merge base."""
        changed = self.get_changed_files()
        if not changed:
            return False
        hits = touches_global_files(changed)
        if hits:
            self._log(f"global invalidation: {', '.join(hits)}")
        return bool(hits)

    def check_type_specific_invalidation(self, check_type: str) -> bool:
        """True when a changed path matches the kind's sensitivity patterns."""
        self._require_check_type(check_type)
        changed = self.get_changed_files()
        if not changed:
            return False
        hits = matching_paths(check_type, changed)
        if hits:
            self._log(f"{check_type} invalidated by {len(hits)} changed file(s)")
        return bool(hits)

    def is_invalidated(self, check_type: str) -> bool:
        return self.check_global_invalidation() or self.check_type_specific_invalidation(check_type)
