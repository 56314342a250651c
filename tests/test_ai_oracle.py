from unittest.mock import MagicMock

import pytest

from civicwatch.infra.ai_oracle import GroqOracle, OracleError, TextOracle


def _oracle_replying(content):
    oracle = GroqOracle(api_key="test-key", model="test-model", timeout=1)
    oracle.client = MagicMock()
    completion = MagicMock()
    completion.choices = [MagicMock()]
    completion.choices[0].message.content = content
    oracle.client.chat.completions.create.return_value = completion
    return oracle


def test_labels_parsed_from_fenced_json():
    oracle = _oracle_replying('```json\n{"category": "Roads", "sentiment": "urgent"}\n```')
    suggestion = oracle.suggest_report_labels("Large pothole on Elm St", "infrastructure")
    assert suggestion.category == "roads"
    assert suggestion.sentiment == "urgent"

    kwargs = oracle.client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["response_format"] == {"type": "json_object"}


def test_out_of_list_category_is_dropped():
    oracle = _oracle_replying('{"category": "bribery", "sentiment": "negative"}')
    suggestion = oracle.suggest_report_labels("Broken streetlight", "infrastructure")
    assert suggestion.category is None
    assert suggestion.sentiment == "negative"


def test_unusable_labels_raise():
    oracle = _oracle_replying('{"category": "weather", "sentiment": "sleepy"}')
    with pytest.raises(OracleError):
        oracle.suggest_report_labels("text", "misconduct")


@pytest.mark.parametrize("content", [None, "", "not json", "[1, 2]"])
def test_malformed_replies_raise(content):
    with pytest.raises(OracleError):
        _oracle_replying(content).parse_transparency_query("roads over 1M")


def test_client_errors_are_wrapped():
    oracle = _oracle_replying("{}")
    oracle.client.chat.completions.create.side_effect = TimeoutError("slow")
    with pytest.raises(OracleError, match="AI request failed"):
        oracle.parse_transparency_query("roads")


def test_disabled_oracle():
    assert TextOracle().enabled is False
    with pytest.raises(OracleError):
        TextOracle().suggest_report_labels("x", "infrastructure")
    assert GroqOracle(api_key="").enabled is False
