import json
from types import MappingProxyType
from typing import Any, Dict, Mapping


def parse_users(records: Any) -> Mapping[str, str]:
    """Build a read-only {id: password} lookup from a list of {id, password} records.

    The first record wins when an id is repeated.
    """
    if not isinstance(records, list):
        raise ValueError("credential store must be a JSON array of {id, password} records")
    users: Dict[str, str] = {}
    for i, rec in enumerate(records):
        if not isinstance(rec, dict):
            raise ValueError(f"credential record #{i} is not an object")
        uid = rec.get("id")
        pw = rec.get("password")
        if not isinstance(uid, str) or not uid or not isinstance(pw, str):
            raise ValueError(f"credential record #{i} needs string 'id' and 'password'")
        users.setdefault(uid, pw)
    return MappingProxyType(users)


def load_users(path: str) -> Mapping[str, str]:
    with open(path, "r", encoding="utf-8") as fh:
        return parse_users(json.load(fh))
