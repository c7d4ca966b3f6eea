from pathlib import Path
import json
from functools import lru_cache
from typing import Tuple

import jsonschema

REPO_ROOT = Path(__file__).resolve().parents[2]
SCHEMA_DIR = REPO_ROOT / "config" / "schemas"


@lru_cache(maxsize=None)
def _load_schema(name: str) -> dict:
    schema_path = SCHEMA_DIR / f"{name}.schema.json"
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema not found: {schema_path}")
    return json.loads(schema_path.read_text(encoding="utf-8"))


def validate_with_schema(data: dict, name: str) -> Tuple[bool, str]:
    try:
        schema = _load_schema(name)
    except Exception as e:
        return False, str(e)

    try:
        jsonschema.validate(instance=data, schema=schema)
        return True, "Valid"
    except jsonschema.exceptions.ValidationError as e:
        return False, e.message
