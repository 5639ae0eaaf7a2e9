"""Core primitives for the ReliefChain registry.

Foundational helpers shared by the ledger, snapshots and verification:
- SHA-256 hashing
- Canonical JSON serialization (JCS/RFC8785 subset)
- YAML/JSON loading and writing with consistent encoding
"""

from __future__ import annotations

import hashlib
import json
import pathlib
from datetime import date, datetime, timezone
from typing import Any, Dict

import yaml

PACKAGE_ROOT = pathlib.Path(__file__).resolve().parent
SCHEMAS_DIR = PACKAGE_ROOT / "schemas"


def sha256_bytes(data: bytes) -> str:
    """Compute SHA-256 hash of bytes, returning lowercase hex string."""
    return hashlib.sha256(data).hexdigest()


def _coerce_json_types(obj: Any) -> Any:
    """Coerce Python objects into strict JSON types.

    - Dates become RFC3339 strings.
    - Tuples become lists.
    - Floats are rejected; every registry quantity is an integer.
    """
    if obj is None:
        return None
    if isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        raise ValueError("Floats are not allowed in canonical JSON. Use strings or integers.")
    if isinstance(obj, (datetime, date)):
        if isinstance(obj, datetime):
            if obj.tzinfo is None:
                obj = obj.replace(tzinfo=timezone.utc)
            return obj.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [_coerce_json_types(x) for x in obj]
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            out[str(k)] = _coerce_json_types(v)
        return out
    return str(obj)


def canonical_json_bytes(obj: Any) -> bytes:
    """Serialize object to canonical JSON bytes.

    Keys sorted, no whitespace, UTF-8, floats rejected. Used for every digest
    the registry commits to (receipts, state roots, signed approvals).
    """
    clean = _coerce_json_types(obj)
    return json.dumps(clean, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def digest_of(obj: Any) -> str:
    """sha256(canonical_json(obj))."""
    return sha256_bytes(canonical_json_bytes(obj))


def load_yaml(path: pathlib.Path) -> Any:
    """Load YAML file with UTF-8 encoding."""
    return yaml.safe_load(pathlib.Path(path).read_text(encoding="utf-8"))


def load_json(path: pathlib.Path) -> Any:
    """Load JSON file with UTF-8 encoding."""
    return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))


def load_document(path: pathlib.Path) -> Any:
    """Load a JSON or YAML document, chosen by file suffix."""
    path = pathlib.Path(path)
    if path.suffix.lower() == ".json":
        return load_json(path)
    return load_yaml(path)


def write_document(path: pathlib.Path, obj: Any) -> None:
    """Write a JSON or YAML document, chosen by file suffix."""
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".json":
        text = json.dumps(obj, indent=2, ensure_ascii=False) + "\n"
    else:
        text = yaml.safe_dump(obj, default_flow_style=False, sort_keys=False)
    path.write_text(text, encoding="utf-8")
