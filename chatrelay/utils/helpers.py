import json
import random
import string
from pathlib import Path
from typing import Any

import json_repair

from chatrelay.errors import ToolArgumentsError

_ID_ALPHABET = string.ascii_lowercase + string.digits


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    return ensure_dir(Path.home() / ".chatrelay")


def generate_call_id() -> str:
    """Synthesize a tool-call id for fragments that arrive without one."""
    return "call_" + "".join(random.choices(_ID_ALPHABET, k=6))


def safe_json_parse(text: str | None) -> dict[str, Any]:
    """Parse tool-call arguments, tolerating trailing junk after the last ``}``.

    Strict parse first; on failure the text is cut after its last closing
    brace and re-parsed leniently. Anything that still does not yield a JSON
    object raises ToolArgumentsError.
    """
    if not text or not text.strip():
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        last_brace = text.rfind("}")
        if last_brace == -1:
            raise ToolArgumentsError(f"Unparseable arguments: {e}") from e
        try:
            parsed = json_repair.loads(text[: last_brace + 1])
        except Exception as e2:
            raise ToolArgumentsError(f"Unparseable arguments after recovery: {e2}") from e2
    if not isinstance(parsed, dict):
        raise ToolArgumentsError(f"Arguments are not a JSON object: {text[:80]}")
    return parsed


def preview(text: str | None, limit: int = 80) -> str:
    text = text or ""
    return text[:limit] + "..." if len(text) > limit else text
