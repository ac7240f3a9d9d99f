import json
from typing import Any


def log_event(component: str, **payload: Any) -> None:
    """Print one JSON line tagged with the emitting component."""
    try:
        print(json.dumps({"component": component, **payload}, ensure_ascii=False, default=str), flush=True)
    except (TypeError, ValueError):
        print({"component": component, **payload}, flush=True)
