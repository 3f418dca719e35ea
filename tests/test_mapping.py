from __future__ import annotations

import pytest

from charon_key.domain.error_codes import ErrorCode
from charon_key.domain.mapping import IdentityMapping
from charon_key.errors import ConfigError


def test_parse_accumulates_identities_in_order():
    mapping = IdentityMapping.parse("alice:ghA,alice:ghB,bob:ghC")

    assert mapping.to_dict() == {"alice": ["ghA", "ghB"], "bob": ["ghC"]}
    assert mapping.lookup("alice") == ("ghA", "ghB")
    assert mapping.lookup("bob") == ("ghC",)


def test_parse_keeps_repeated_identities_and_trims_whitespace():
    mapping = IdentityMapping.parse(" alice : ghA , alice:ghA,  ,bob:ghC, ")

    assert mapping.lookup("alice") == ("ghA", "ghA")
    assert list(mapping.to_dict()) == ["alice", "bob"]


def test_wildcard_used_for_unmapped_account():
    mapping = IdentityMapping.parse("*:ghX")

    assert mapping.lookup("anyone") == ("ghX",)
    assert mapping.lookup("root") == ("ghX",)


def test_exact_match_wins_over_wildcard():
    mapping = IdentityMapping.parse("*:ghX,alice:ghA")

    assert mapping.lookup("alice") == ("ghA",)
    assert mapping.lookup("bob") == ("ghX",)


def test_lookup_without_mapping_or_wildcard_is_empty():
    mapping = IdentityMapping.parse("bob:ghC")

    assert mapping.lookup("alice") == ()


@pytest.mark.parametrize(
    "text",
    [
        "",
        "   ",
        None,
        "alice",
        "alice:ghA:extra",
        ":ghA",
        "alice:",
        "alice: ",
        ",,,",
        "alice:ghA,broken",
    ],
)
def test_parse_rejects_malformed_mapping(text):
    with pytest.raises(ConfigError) as excinfo:
        IdentityMapping.parse(text)
    assert excinfo.value.code == ErrorCode.MAPPING_INVALID.value


def test_mapping_is_not_mutable_through_views():
    mapping = IdentityMapping.parse("alice:ghA")

    snapshot = mapping.to_dict()
    snapshot["alice"].append("intruder")
    snapshot["mallory"] = ["ghM"]

    assert mapping.lookup("alice") == ("ghA",)
    assert mapping.lookup("mallory") == ()
    assert len(mapping) == 1
