# tests/base/test_parts.py

import pytest

from async_search_repository.base.clauses import PartType
from async_search_repository.base.exceptions import QueryPlanException
from async_search_repository.base.parts import Part, PartTree, Subject, match_property
from tests.conftest import Person


def test_single_equality_term():
    tree = PartTree.parse("find_by_status", Person)
    assert tree.subject is Subject.FIND
    assert tree.or_parts == ((Part("status", PartType.SIMPLE_PROPERTY),),)


def test_and_or_split():
    tree = PartTree.parse(
        "find_by_status_and_age_greater_than_or_name_starting_with", Person
    )
    assert len(tree.or_parts) == 2
    first, second = tree.or_parts
    assert [p.property for p in first] == ["status", "age"]
    assert first[1].part_type is PartType.GREATER_THAN
    assert second == (Part("name", PartType.STARTING_WITH),)


def test_nested_property_is_matched_greedily():
    tree = PartTree.parse("find_by_address_city", Person)
    assert tree.parts == [Part("address.city", PartType.SIMPLE_PROPERTY)]


@pytest.mark.parametrize(
    "method_name, part_type, num_args",
    [
        ("find_by_age_between", PartType.BETWEEN, 2),
        ("find_by_location_near", PartType.NEAR, 2),
        ("find_by_email_is_null", PartType.IS_NULL, 0),
        ("find_by_email_is_not_null", PartType.IS_NOT_NULL, 0),
        ("find_by_email_exists", PartType.EXISTS, 0),
        ("find_by_status_not", PartType.NEGATING_SIMPLE_PROPERTY, 1),
        ("find_by_status_not_in", PartType.NOT_IN, 1),
        ("find_by_tags_containing_all", PartType.CONTAINING_ALL, 1),
        ("find_by_age_greater_than_equal", PartType.GREATER_THAN_EQUAL, 1),
    ],
)
def test_operator_keywords(method_name, part_type, num_args):
    (part,) = PartTree.parse(method_name, Person).parts
    assert part.part_type is part_type
    assert part.num_args == num_args


def test_null_checks_are_flagged():
    (part,) = PartTree.parse("find_by_email_is_null", Person).parts
    assert part.is_null_check


def test_order_by_clause():
    tree = PartTree.parse("find_by_status_order_by_age_desc_and_name_asc", Person)
    assert [(o.property, o.ascending) for o in tree.orders] == [("age", False), ("name", True)]
    assert tree.parts == [Part("status", PartType.SIMPLE_PROPERTY)]


def test_subject_modifiers():
    tree = PartTree.parse("find_top_3_by_status", Person)
    assert tree.limit == 3
    assert PartTree.parse("find_first_by_status", Person).limit == 1
    assert PartTree.parse("find_distinct_by_status", Person).parts == [Part("status")]


@pytest.mark.parametrize(
    "method_name, subject",
    [
        ("count_by_status", Subject.COUNT),
        ("exists_by_status", Subject.EXISTS),
        ("delete_by_status", Subject.DELETE),
        ("remove_by_status", Subject.DELETE),
        ("get_by_status", Subject.FIND),
    ],
)
def test_subjects(method_name, subject):
    assert PartTree.parse(method_name, Person).subject is subject


def test_find_all_has_no_terms():
    tree = PartTree.parse("find_all", Person)
    assert tree.or_parts == ()


def test_unknown_verb_raises():
    with pytest.raises(QueryPlanException):
        PartTree.parse("frobnicate_by_status", Person)


def test_unknown_property_keeps_raw_name():
    (part,) = PartTree.parse("find_by_shoe_size_greater_than", Person).parts
    assert part.property == "shoe_size"
    assert part.part_type is PartType.GREATER_THAN


def test_ignore_case_suffix_is_stripped():
    (part,) = PartTree.parse("find_by_name_ignore_case", Person).parts
    assert part.property == "name"


def test_match_property():
    assert match_property(["address", "city"], Person) == "address.city"
    assert match_property(["age"], Person) == "age"
    assert match_property(["address", "nowhere"], Person) is None
    assert match_property([], Person) is None
