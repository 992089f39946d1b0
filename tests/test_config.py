import json

from chatrelay.config.loader import load_config, save_config
from chatrelay.config.schema import Config


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "nope.jsonc")

    assert config.loop.max_passes == 5
    assert config.cache.ttl_seconds == 86400
    assert config.delivery.ms_per_char == 40
    assert config.endpoints == {}


def test_jsonc_with_comments_and_camel_case(tmp_path):
    path = tmp_path / "config.jsonc"
    path.write_text(
        """{
  // endpoint settings
  "endpoints": {"Example": {"rtmAppId": "abc", "llmApiKey": "sk-1"}},
  /* shorter loop */
  "loop": {"maxPasses": 3},
  "delivery": {"maxTotalMs": 1500}
}""",
        encoding="utf-8",
    )
    config = load_config(path)

    assert config.loop.max_passes == 3
    assert config.delivery.max_total_ms == 1500
    assert config.endpoint("example").rtm_app_id == "abc"
    assert config.endpoint("EXAMPLE").llm_api_key == "sk-1"
    assert config.endpoint("other").llm_model == "gpt-4o-mini"


def test_comment_markers_inside_strings_survive(tmp_path):
    path = tmp_path / "config.jsonc"
    path.write_text('{"transport": {"baseUrl": "https://example.com/api"}}', encoding="utf-8")

    assert load_config(path).transport.base_url == "https://example.com/api"


def test_invalid_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")

    assert load_config(path).loop.max_passes == 5


def test_new_config_is_written_from_template(tmp_path):
    path = save_config(Config(), tmp_path / "config.jsonc")

    assert "//" in path.read_text(encoding="utf-8")
    config = load_config(path)
    assert config.endpoint("example").llm_base_url == "https://api.openai.com/v1"
    assert config.conversations.persist is False
    assert config.conversations.max_memory_mb == 50


def test_template_names_the_env_overrides_that_are_read(tmp_path):
    from chatrelay.session.registry import env_prefix

    text = save_config(Config(), tmp_path / "config.jsonc").read_text(encoding="utf-8")

    assert f"{env_prefix('example')}_LLM_API_KEY" in text
    assert "EXAMPLE_LLM_API_KEY" not in text


def test_existing_config_is_saved_with_aliases(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{}", encoding="utf-8")
    config = Config.model_validate({"loop": {"maxPasses": 2}})
    save_config(config, path)

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["loop"]["maxPasses"] == 2


def test_relay_context_from_config():
    from chatrelay.agent.orchestrator import RelayContext
    from chatrelay.session.conversation import ConversationStore

    config = Config.model_validate({"loop": {"maxPasses": 3}, "cache": {"ttlSeconds": 60}})
    context = RelayContext.from_config(config)

    assert context.max_passes == 3
    assert context.cache.ttl == 60
    assert type(context.store) is ConversationStore
    assert context.store.max_memory == 50 * 1024 * 1024
    assert context.registry.config is config
