import pytest

from assurance.errors import ValidationError
from assurance.services.canonical import canonical_serialize
from assurance.services.hashing import sha256, hash_with_salt, pseudonymize


def test_key_order_does_not_matter_at_any_depth():
    a = {"b": 1, "a": {"y": [1, 2], "x": None}}
    b = {"a": {"x": None, "y": [1, 2]}, "b": 1}
    assert canonical_serialize(a) == canonical_serialize(b)
    assert canonical_serialize(a) == '{"a":{"x":null,"y":[1,2]},"b":1}'


def test_arrays_keep_their_order():
    assert canonical_serialize([1, 2]) != canonical_serialize([2, 1])


def test_null_and_missing_key_are_distinct():
    assert canonical_serialize({"a": None}) == '{"a":null}'
    assert canonical_serialize({}) == "{}"


def test_scalars():
    assert canonical_serialize(None) == "null"
    assert canonical_serialize(True) == "true"
    assert canonical_serialize(False) == "false"
    assert canonical_serialize(3) == "3"
    assert canonical_serialize(2.0) == "2"
    assert canonical_serialize(0.5) == "0.5"


def test_strings_use_json_escaping_and_keep_unicode():
    assert canonical_serialize('a"b\n') == '"a\\"b\\n"'
    assert canonical_serialize("café") == '"café"'


def test_keys_sorted_by_code_point():
    assert canonical_serialize({"b": 1, "B": 2, "a": 3}) == '{"B":2,"a":3,"b":1}'


@pytest.mark.parametrize("bad", [
    {1: "x"}, float("nan"), float("inf"), {"s": {1, 2}}, object(),
    "lone \ud800 surrogate", {"key\udfff": 1}, ["ok", "\udc80"],
])
def test_rejects_values_outside_the_closed_type(bad):
    with pytest.raises(ValidationError):
        canonical_serialize(bad)


def test_sha256_is_lowercase_hex():
    assert sha256("") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    assert len(sha256("abc")) == 64


def test_hash_with_salt_joins_with_colon():
    assert hash_with_salt("salt", "10.0.0.1") == sha256("salt:10.0.0.1")
    assert hash_with_salt("salt", "10.0.0.1") != hash_with_salt("other", "10.0.0.1")


def test_pseudonymize_is_deterministic_and_skips_empty():
    assert pseudonymize("10.0.0.1") == pseudonymize("10.0.0.1")
    assert pseudonymize("10.0.0.1") != "10.0.0.1"
    assert pseudonymize(None) is None
    assert pseudonymize("") is None
