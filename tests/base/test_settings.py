# tests/base/test_settings.py

import pytest

from async_search_repository.base.settings import QuerySettings


def test_defaults():
    settings = QuerySettings()
    assert settings.default_limit == 10000
    assert settings.default_dialect == 1
    assert settings.default_return_fields == ()
    assert not settings.strict_property_resolution


def test_from_env_reads_every_variable():
    settings = QuerySettings.from_env(
        {
            "SEARCH_QUERY_LIMIT": "50",
            "SEARCH_QUERY_DIALECT": "2",
            "SEARCH_QUERY_STRICT": "Yes",
            "SEARCH_QUERY_RETURN_FIELDS": "name, age,,",
        }
    )
    assert settings == QuerySettings(50, 2, ("name", "age"), True)


def test_from_env_keeps_defaults_for_unset_variables():
    assert QuerySettings.from_env({}) == QuerySettings()


def test_from_env_uses_the_process_environment(monkeypatch):
    monkeypatch.setenv("SEARCH_QUERY_LIMIT", "7")
    monkeypatch.delenv("SEARCH_QUERY_STRICT", raising=False)
    assert QuerySettings.from_env().default_limit == 7


def test_invalid_numbers_raise():
    with pytest.raises(ValueError):
        QuerySettings.from_env({"SEARCH_QUERY_LIMIT": "lots"})
