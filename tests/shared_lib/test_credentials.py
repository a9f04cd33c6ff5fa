"""Tests for shared_lib.credentials — username to AniList token routing."""

import pytest

from shared_lib.credentials import CredentialTable


def test_user_token_wins_over_fallback():
    table = CredentialTable.from_settings({"alice": {"token": "a"}}, fallback="shared")
    assert table.resolve_token("alice") == "a"


def test_unknown_user_gets_fallback():
    table = CredentialTable.from_settings({"alice": {"token": "a"}}, fallback="shared")
    assert table.resolve_token("bob") == "shared"


def test_unknown_user_without_fallback_is_none():
    table = CredentialTable.from_settings({"alice": "a"})
    assert table.resolve_token("bob") is None


def test_bare_string_and_mapping_values():
    table = CredentialTable.from_settings({
        "alice": "a",
        "bob": {"token": "b", "display_name": "Bobby"},
    })
    assert table.resolve_token("alice") == "a"
    assert table.resolve_token("bob") == "b"
    assert len(table) == 2


def test_entry_without_token_falls_through_to_fallback():
    table = CredentialTable.from_settings({"carol": {"display_name": "C"}}, fallback="shared")
    assert table.resolve_token("carol") == "shared"
    assert len(table) == 0


def test_empty_fallback_is_treated_as_none():
    table = CredentialTable.from_settings({}, fallback="")
    assert table.fallback is None


def test_table_is_read_only():
    table = CredentialTable.from_settings({"alice": "a"})
    with pytest.raises(TypeError):
        table.users["mallory"] = "m"
