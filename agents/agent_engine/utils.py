"""
Shared helpers: JSONL I/O, id generation, mention parsing, trace-safe value clipping.
"""
from __future__ import annotations

import dataclasses
import json
import re
import uuid
from pathlib import Path
from typing import Any, List, Optional

_MENTION_RE = re.compile(r"(?<![\w@])@([A-Za-z0-9_][A-Za-z0-9_.-]{0,31})")


def append_jsonl(path: Path, obj: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")


def read_jsonl(path: Path, limit: Optional[int] = None) -> List[dict]:
    if not path.exists():
        return []
    out: List[dict] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                out.append(json.loads(line))
            except ValueError:
                continue
    if limit is not None and limit > 0:
        return out[-limit:]
    return out


def new_id(prefix: str = "") -> str:
    rid = uuid.uuid4().hex[:16]
    return f"{prefix}_{rid}" if prefix else rid


def extract_mentions(text: str) -> List[str]:
    """Return lower-cased @usernames in order of first appearance."""
    seen: List[str] = []
    for m in _MENTION_RE.finditer(text or ""):
        name = m.group(1).rstrip(".-").lower()
        if name and name not in seen:
            seen.append(name)
    return seen


def clip(value: Any, max_chars: int, _depth: int = 0) -> Any:
    """Make a value JSON-friendly for trace sinks and cap long strings."""
    if _depth > 6:
        return "<nested>"
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)
    if isinstance(value, str):
        if max_chars > 0 and len(value) > max_chars:
            return value[:max_chars] + f"...[+{len(value) - max_chars} chars]"
        return value
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(k): clip(v, max_chars, _depth + 1) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [clip(v, max_chars, _depth + 1) for v in value]
    return clip(str(value), max_chars, _depth + 1)
