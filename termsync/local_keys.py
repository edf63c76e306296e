"""Loading the local key inventory produced by the external key detector."""
import json
import logging
from typing import Any, List

import jsonschema

from termsync.errors import InvalidInputError
from termsync.models import LocalKey

logger = logging.getLogger(__name__)

# The detector writes a JSON list; unknown fields are tolerated so newer
# detector versions do not break older sync runs.
LOCAL_KEYS_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["key"],
        "properties": {
            "key": {"type": "string", "minLength": 1},
            "phrase": {"type": ["string", "null"]},
            "files": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["path"],
                    "properties": {
                        "path": {"type": "string"},
                        "line": {"type": ["integer", "null"]},
                        "column": {"type": ["integer", "null"]},
                        "context": {"type": ["string", "null"]},
                    },
                },
            },
            "framework": {"type": ["string", "null"]},
            "usage": {"type": ["string", "null"]},
            "dynamic": {"type": "boolean"},
            "examples": {"type": "array", "items": {"type": "string"}},
        },
    },
}


def parse_local_keys(data: Any) -> List[LocalKey]:
    """
    Validate and convert detector output into LocalKey records.

    Raises:
        InvalidInputError: If the payload does not match LOCAL_KEYS_SCHEMA.
    """
    # Some detector versions wrap the list as {"keys": [...]}.
    if isinstance(data, dict) and "keys" in data:
        data = data["keys"]
    try:
        jsonschema.validate(instance=data, schema=LOCAL_KEYS_SCHEMA)
    except jsonschema.ValidationError as schema_exc:
        raise InvalidInputError(f"Invalid local key inventory: {schema_exc.message}") from schema_exc
    return [LocalKey.from_dict(item) for item in data]


def load_local_keys(file_path: str) -> List[LocalKey]:
    """
    Load the local key inventory from a JSON file.

    Args:
        file_path: Path to the detector's JSON output.

    Returns:
        The LocalKey records in file order (duplicates are kept; the diff
        engine resolves them).
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as json_exc:
        raise InvalidInputError(f"Local key file '{file_path}' is not valid JSON: {json_exc}") from json_exc
    keys = parse_local_keys(data)
    logger.info("Loaded %d local keys from %s", len(keys), file_path)
    return keys
