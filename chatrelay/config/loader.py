import json
import re
from pathlib import Path

from loguru import logger

from chatrelay.config.schema import Config


_JSONC_TEMPLATE = """\
{
  // Endpoints, keyed by name. Environment variables such as
  // EXAMPLE_RTM_LLM_API_KEY or EXAMPLE_RTM_APP_ID override these values.
  "endpoints": {
    "example": {
      "rtmAppId": "",
      "rtmToken": "",
      "rtmFromUser": "",
      "rtmChannel": "",
      "llmModel": "gpt-4o-mini",
      "llmBaseUrl": "https://api.openai.com/v1",
      "llmApiKey": "",
      // Leave empty to use the endpoint's built-in prompt
      "llmPrompt": ""
    }
  },

  // Simulated typing delay before a chat reply is delivered
  "delivery": {
    "baseDelayMs": 300,
    "wordsPerMinute": 300,
    "charsPerWord": 5,
    "maxTypingMs": 6700,
    "jitterMs": 300,
    "maxTotalMs": 2000
  },

  // Tool results are kept for repairing conversations later
  "cache": { "ttlSeconds": 86400, "sweepIntervalSeconds": 60 },

  // Maximum completion round-trips per message
  "loop": { "maxPasses": 5, "stream": false },

  // persist: store conversations in LanceDB under ~/.chatrelay
  // maxMemoryMb: cleanup evicts the largest conversations above this size
  "conversations": {
    "maxAgeHours": 24,
    "cleanupIntervalSeconds": 3600,
    "maxMemoryMb": 50,
    "persist": false
  },

  // REST credentials used to publish peer messages
  "transport": {
    "baseUrl": "https://api.agora.io/dev/v2/project",
    "customerKey": "",
    "customerSecret": "",
    "timeout": 10
  }
}
"""


def get_config_path() -> Path:
    base = Path.home() / ".chatrelay"
    jsonc = base / "config.jsonc"
    if jsonc.exists():
        return jsonc
    return base / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    path = config_path or get_config_path()

    if path.exists():
        try:
            text = path.read_text(encoding="utf-8")
            data = json.loads(_strip_jsonc_comments(text))
            return Config.model_validate(data)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning("Failed to load config from {}: {}; using defaults", path, e)

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> Path:
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix != ".jsonc" and not path.exists():
        path = path.with_suffix(".jsonc")

    if path.suffix == ".jsonc" and not path.exists():
        path.write_text(_JSONC_TEMPLATE, encoding="utf-8")
    else:
        data = config.model_dump(by_alias=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
    return path


def _strip_jsonc_comments(text: str) -> str:
    return re.sub(
        r'"(?:[^"\\]|\\.)*"|//[^\n]*|/\*[\s\S]*?\*/',
        lambda m: m.group() if m.group().startswith('"') else "",
        text,
    )
