"""
issueflow qa-cache - Query and update the QA result cache.

Exit codes follow shell-friendly conventions: `check` exits 0 on a hit and
1 on a miss; bad arguments or input exit 2.
"""

import json
import sys
from pathlib import Path

from issueflow.lib import constants
from issueflow.lib.config import ConfigError, load_settings
from issueflow.qa.cache import CheckResult, QACache
from issueflow.qa.checks import CHECK_TYPES, is_check_type


def _open_cache(args, project_dir: Path) -> QACache:
    settings = load_settings(project_dir)
    return QACache(
        project_dir,
        base_branch=settings.base_branch,
        default_ttl=settings.qa_cache_ttl,
        verbose=getattr(args, "verbose", False),
    )


def _check_kind(kind: str) -> bool:
    if is_check_type(kind):
        return True
    print(f"ERROR: Unknown check type '{kind}'. Valid types: {', '.join(CHECK_TYPES)}")
    return False


def parse_result_input(text: str) -> CheckResult:
    """
    Parse a check result from JSON.

    Raises:
        ValueError: if the JSON is malformed or lacks passed/message
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    if not isinstance(data.get("passed"), bool):
        raise ValueError("'passed' must be a boolean")
    if not isinstance(data.get("message"), str):
        raise ValueError("'message' must be a string")
    details = data.get("details")
    if details is not None and not isinstance(details, dict):
        raise ValueError("'details' must be an object")
    return CheckResult(passed=data["passed"], message=data["message"], details=details)


def cmd_cache_check(args, project_dir: Path) -> int:
    if not _check_kind(args.kind):
        return constants.EXIT_CONFIG_ERROR
    try:
        cache = _open_cache(args, project_dir)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return constants.EXIT_CONFIG_ERROR
    lookup = cache.get(args.kind)
    if lookup.hit:
        print("HIT")
        return constants.EXIT_OK
    print(f"MISS ({lookup.miss_reason})")
    return constants.EXIT_FAILED


def cmd_cache_get(args, project_dir: Path) -> int:
    if not _check_kind(args.kind):
        return constants.EXIT_CONFIG_ERROR
    try:
        cache = _open_cache(args, project_dir)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return constants.EXIT_CONFIG_ERROR
    lookup = cache.get(args.kind)
    if not lookup.hit:
        print(json.dumps({"hit": False, "miss_reason": lookup.miss_reason, "is_stale": lookup.is_stale}))
        return constants.EXIT_FAILED
    print(json.dumps({"hit": True, "result": lookup.result.to_dict()}, indent=2))
    return constants.EXIT_OK


def cmd_cache_set(args, project_dir: Path) -> int:
    if not _check_kind(args.kind):
        return constants.EXIT_CONFIG_ERROR
    try:
        result = parse_result_input(sys.stdin.read())
    except ValueError as e:
        # json.JSONDecodeError is a ValueError
        print(f"ERROR: Invalid result JSON on stdin: {e}")
        return constants.EXIT_CONFIG_ERROR
    if args.ttl is not None and args.ttl <= 0:
        print(f"ERROR: --ttl must be positive, got {args.ttl}")
        return constants.EXIT_CONFIG_ERROR

    try:
        cache = _open_cache(args, project_dir)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return constants.EXIT_CONFIG_ERROR
    cache.set(args.kind, result, ttl_seconds=args.ttl)
    print(f"Cached {args.kind} (passed={str(result.passed).lower()})")
    return constants.EXIT_OK


def cmd_cache_clear(args, project_dir: Path) -> int:
    if args.kind is not None and not _check_kind(args.kind):
        return constants.EXIT_CONFIG_ERROR
    try:
        cache = _open_cache(args, project_dir)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return constants.EXIT_CONFIG_ERROR
    if args.kind is None:
        cache.clear_all()
        print("Cleared all cached results")
    elif cache.clear(args.kind):
        print(f"Cleared {args.kind}")
    else:
        print(f"No cached result for {args.kind}")
    return constants.EXIT_OK


def cmd_cache_status(args, project_dir: Path) -> int:
    try:
        cache = _open_cache(args, project_dir)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return constants.EXIT_CONFIG_ERROR
    for kind, status in cache.get_status().items():
        if not status.cached:
            print(f"  {kind:<14} -")
            continue
        verdict = "pass" if status.passed else "fail"
        state = "valid" if status.valid else status.miss_reason
        print(f"  {kind:<14} {verdict:<5} {state:<14} cached {status.cached_at}")
    return constants.EXIT_OK


def cmd_cache_hash(args, project_dir: Path) -> int:
    try:
        cache = _open_cache(args, project_dir)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return constants.EXIT_CONFIG_ERROR
    print(f"diff: {cache.compute_diff_hash()}")
    for kind in CHECK_TYPES:
        print(f"{kind}: {cache.compute_config_hash(kind)}")
    return constants.EXIT_OK
