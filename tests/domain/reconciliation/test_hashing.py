from __future__ import annotations

from marketrecon.domain.reconciliation.hashing import (
    FINGERPRINT_LENGTH,
    canonical_serialization,
    content_hash,
)


def test_content_hash_ignores_field_insertion_order() -> None:
    first = {"title": "Niche blog", "price": 50000, "category": "content"}
    second = {"category": "content", "price": 50000, "title": "Niche blog"}

    assert content_hash(first) == content_hash(second)


def test_content_hash_changes_with_any_value() -> None:
    baseline = {"title": "Niche blog", "price": 50000}

    assert content_hash(baseline) != content_hash({"title": "Niche blog", "price": 55000})
    assert content_hash(baseline) != content_hash({"title": "Niche Blog", "price": 50000})
    assert content_hash(baseline) != content_hash({**baseline, "category": None})


def test_content_hash_is_fixed_length_hex() -> None:
    fingerprint = content_hash({"title": "Ünïcode shop"})

    assert len(fingerprint) == FINGERPRINT_LENGTH
    int(fingerprint, 16)


def test_canonical_serialization_sorts_keys_compactly() -> None:
    assert canonical_serialization({"b": 1, "a": "x"}) == '{"a":"x","b":1}'


def test_content_hash_of_empty_mapping_is_stable() -> None:
    assert content_hash({}) == content_hash({})


def test_content_hash_treats_integral_floats_as_integers() -> None:
    assert content_hash({"price": 50000}) == content_hash({"price": 50000.0})
    assert canonical_serialization({"price": 50000.0}) == '{"price":50000}'
    assert content_hash({"price": 50000.5}) != content_hash({"price": 50000})


def test_content_hash_keeps_booleans_apart_from_numbers() -> None:
    assert content_hash({"verified": True}) != content_hash({"verified": 1})
    assert content_hash({"verified": False}) != content_hash({"verified": 0.0})
