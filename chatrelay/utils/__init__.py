"""Utility functions for chatrelay."""

from chatrelay.utils.helpers import (
    ensure_dir,
    generate_call_id,
    get_data_path,
    preview,
    safe_json_parse,
)

__all__ = ["ensure_dir", "generate_call_id", "get_data_path", "preview", "safe_json_parse"]
