from __future__ import annotations

import pytest

from plansync.domain.normalize.records import parse_catalog, parse_department_directory
from plansync.domain.sensitive.resolver import MatchTier, SensitiveAreaResolver, department_name_index


@pytest.fixture
def catalog(catalog_rows):
    return parse_catalog({"$values": catalog_rows})


@pytest.fixture
def directory(directory_rows):
    return parse_department_directory(directory_rows)


def test_exact_match_is_scoped_to_department(catalog, directory):
    resolver = SensitiveAreaResolver()
    it = resolver.resolve("1", ["server room"], catalog, directory)
    finance = resolver.resolve("3", ["Server Room"], catalog, directory)
    assert it.area_ids == frozenset({"11"})
    assert finance.area_ids == frozenset({"32"})
    assert it.matches[0].tier == MatchTier.EXACT


def test_compound_label_round_trip(catalog, directory):
    resolver = SensitiveAreaResolver()
    result = resolver.resolve("1", ["Server Room - IT"], catalog, directory)
    assert result.area_ids == frozenset({"11"})
    assert result.unmatched_labels == frozenset()

    labels = resolver.labels_for_ids("1", result.area_ids, catalog)
    assert labels == ["Server Room"]
    again = resolver.resolve("1", labels, catalog, directory)
    assert again.area_ids == result.area_ids


def test_compound_label_for_other_department_is_unmatched(catalog, directory):
    result = SensitiveAreaResolver().resolve("2", ["Vault - Finance"], catalog, directory)
    assert result.area_ids == frozenset()
    assert result.unmatched_labels == frozenset({"Vault - Finance"})


def test_compound_label_without_department_context(catalog, directory):
    result = SensitiveAreaResolver().resolve(None, ["Vault - Finance"], catalog, directory)
    assert result.area_ids == frozenset({"31"})
    assert result.matches[0].dept_id == "3"


def test_unique_substring_match(catalog, directory):
    result = SensitiveAreaResolver().resolve("2", ["Personnel"], catalog, directory)
    assert result.area_ids == frozenset({"21"})
    assert result.matches[0].tier == MatchTier.CONTAINS


def test_ambiguous_label_is_reported_not_guessed(catalog, directory):
    result = SensitiveAreaResolver().resolve("1", ["Lab"], catalog, directory)
    assert result.area_ids == frozenset()
    assert result.unmatched_labels == frozenset({"Lab"})
    assert set(result.ambiguous["Lab"]) == {"12", "13"}


def test_unknown_label_is_unmatched_without_candidates(catalog, directory):
    result = SensitiveAreaResolver().resolve("1", ["Rooftop"], catalog, directory)
    assert result.unmatched_labels == frozenset({"Rooftop"})
    assert "Rooftop" not in result.ambiguous
    assert not result.fully_resolved


def test_duplicate_labels_resolve_once(catalog, directory):
    result = SensitiveAreaResolver().resolve("1", ["Server Room", " server room "], catalog, directory)
    assert len(result.matches) == 1


def test_resolve_flat_distributes_labels(catalog, directory):
    flat = SensitiveAreaResolver().resolve_flat(
        ["Server Room", "Vault - Finance", "Personnel Files", "Rooftop"],
        ["1", "3"],
        catalog,
        directory,
    )
    assert flat.by_dept["1"].area_ids == frozenset({"11"})
    assert flat.by_dept["3"].area_ids == frozenset({"31", "32"})
    assert flat.unassigned_labels == frozenset({"Personnel Files", "Rooftop"})
    assert flat.labels_for("2") == frozenset()


def test_department_name_index_first_wins_and_accepts_mapping(directory):
    index = department_name_index(directory)
    assert index["it"] == "1"
    assert department_name_index({"Finance": 3})["finance"] == "3"
    assert department_name_index(None) == {}
