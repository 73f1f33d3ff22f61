"""共享工具函数（消除跨模块重复）。"""
from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any


def now_rfc3339() -> str:
    """返回当前 UTC 时间的 RFC3339 字符串（以 Z 结尾）。"""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def canonical_json(obj: Any) -> str:
    """稳定 JSON 表示（sort_keys + 紧凑分隔符），用于 hash/cache key。"""
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)


def sha256_json(obj: Any) -> str:
    """canonical JSON 的 sha256 hex。"""
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()
