# tests/base/test_planner.py

from typing import Any, Dict, List, Optional

import pytest

from async_search_repository.base.clauses import Clause
from async_search_repository.base.exceptions import InvalidPathError, QueryPlanException
from async_search_repository.base.method import (
    Apply,
    GroupBy,
    Load,
    QueryMethod,
    Reduce,
    ReturnShape,
    SortBy,
    aggregation,
    query,
    use_dialect,
)
from async_search_repository.base.plan import (
    AggregationPlan,
    AutocompletePlan,
    DeletePlan,
    ReducerFunction,
    SearchPlan,
    TagValuesPlan,
    Term,
)
from async_search_repository.base.planner import build_plan, shape_for
from async_search_repository.base.results import Page, Pageable
from async_search_repository.base.settings import QuerySettings
from tests.conftest import Person


def plan_for(fn, indexer, settings=None):
    return build_plan(QueryMethod.from_function(fn, Person), indexer, settings)


# =============================================================================
# Derived queries
# =============================================================================

def test_derived_search_plan(indexer):
    def find_by_status_and_age_greater_than(self, status: str, age: int) -> List[Person]: ...

    plan = plan_for(find_by_status_and_age_greater_than, indexer)
    assert isinstance(plan, SearchPlan)
    assert plan.or_parts == (
        (
            Term("status", Clause.TAG_SIMPLE_PROPERTY, 0),
            Term("age", Clause.NUMERIC_GREATER_THAN, 1),
        ),
    )
    assert not plan.requires_fallback_aggregation
    assert plan.arity == 2
    assert plan.param_names == ("status", "age")


def test_nested_property_uses_backend_key(indexer):
    def find_by_address_city(self, city: str) -> List[Person]: ...

    plan = plan_for(find_by_address_city, indexer)
    assert plan.terms == [Term("address_city", Clause.TAG_SIMPLE_PROPERTY, 0)]


def test_null_check_sets_fallback_flag(indexer):
    def find_by_status_and_email_is_null(self, status: str) -> List[Person]: ...

    plan = plan_for(find_by_status_and_email_is_null, indexer)
    assert plan.requires_fallback_aggregation
    null_term = plan.null_terms[0]
    assert null_term.clause is Clause.IS_NULL
    assert null_term.index_missing


def test_null_check_inside_a_disjunction_raises(indexer):
    def find_by_status_or_email_is_null(self, status: str) -> List[Person]: ...

    def delete_by_email_is_null_or_department(self, department: str) -> int: ...

    with pytest.raises(QueryPlanException):
        plan_for(find_by_status_or_email_is_null, indexer)
    with pytest.raises(QueryPlanException):
        plan_for(delete_by_email_is_null_or_department, indexer)


def test_null_check_on_unindexed_property_keeps_its_name(indexer):
    def find_by_notes_is_not_null(self) -> List[Person]: ...

    plan = plan_for(find_by_notes_is_not_null, indexer)
    assert plan.terms == [Term("notes", Clause.IS_NOT_NULL, 0, False)]


def test_containing_all_picks_the_all_match_clause(indexer):
    def find_by_tags_containing_all(self, tags: List[str]) -> List[Person]: ...

    plan = plan_for(find_by_tags_containing_all, indexer)
    assert plan.terms[0].clause is Clause.TAG_CONTAINING_ALL


def test_unresolved_property_is_dropped(indexer):
    def find_by_shoe_size_and_status(self, size: int, status: str) -> List[Person]: ...

    plan = plan_for(find_by_shoe_size_and_status, indexer)
    # The remaining term still binds the second argument
    assert plan.terms == [Term("status", Clause.TAG_SIMPLE_PROPERTY, 1)]


def test_unresolved_property_raises_under_strict_resolution(indexer):
    def find_by_shoe_size(self, size: int) -> List[Person]: ...

    with pytest.raises(InvalidPathError):
        plan_for(find_by_shoe_size, indexer, QuerySettings(strict_property_resolution=True))


def test_missing_arguments_raise(indexer):
    def find_by_age_between(self, low: int) -> List[Person]: ...

    with pytest.raises(QueryPlanException):
        plan_for(find_by_age_between, indexer)


def test_sort_and_limit_from_method_name(indexer):
    def find_top_5_by_status_order_by_age_desc(self, status: str) -> List[Person]: ...

    plan = plan_for(find_top_5_by_status_order_by_age_desc, indexer)
    assert plan.sort_by == "age"
    assert not plan.sort_ascending
    assert plan.limit == 5


def test_query_annotation_overrides_paging(indexer):
    @query(offset=2, limit=3, sort_by="name")
    def find_by_status(self, status: str) -> List[Person]: ...

    plan = plan_for(find_by_status, indexer)
    assert (plan.offset, plan.limit, plan.sort_by) == (2, 3, "name")


def test_delete_plan(indexer):
    def delete_by_status(self, status: str) -> int: ...

    plan = plan_for(delete_by_status, indexer)
    assert isinstance(plan, DeletePlan)
    assert plan.terms == [Term("status", Clause.TAG_SIMPLE_PROPERTY, 0)]


def test_special_parameters_do_not_bind(indexer):
    def find_by_status(self, status: str, pageable: Pageable) -> Page[Person]: ...

    method = QueryMethod.from_function(find_by_status, Person)
    assert method.parameter_names == ("status",)
    assert method.return_shape is ReturnShape.PAGE
    assert isinstance(build_plan(method, indexer), SearchPlan)


def test_dialect_defaults_and_override(indexer):
    def find_by_status(self, status: str) -> List[Person]: ...

    @use_dialect(2)
    def find_by_age(self, age: int) -> List[Person]: ...

    assert plan_for(find_by_status, indexer, QuerySettings(default_dialect=3)).dialect == 3
    assert plan_for(find_by_age, indexer).dialect == 2


def test_unknown_method_pattern_raises(indexer):
    def frobnicate_by_status(self, status: str) -> List[Person]: ...

    with pytest.raises(QueryPlanException):
        plan_for(frobnicate_by_status, indexer)


# =============================================================================
# Explicit queries and special methods
# =============================================================================

def test_template_plan(indexer):
    @query("@age:[$low $high]", return_fields=["name"], sort_by="age", sort_ascending=False)
    def in_age_range(self, low: int, high: int) -> List[Person]: ...

    plan = plan_for(in_age_range, indexer)
    assert plan.template == "@age:[$low $high]"
    assert plan.or_parts == ()
    assert plan.return_fields == ("name",)
    assert plan.param_names == ("low", "high")
    assert (plan.sort_by, plan.sort_ascending) == ("age", False)


def test_full_text_plan(indexer):
    def search(self, text: str) -> List[Person]: ...

    plan = plan_for(search, indexer)
    assert plan.terms[0].clause is Clause.TEXT_ALL


def test_tag_values_plan_forces_its_shape(indexer):
    def get_all_status(self) -> List[str]: ...

    method = QueryMethod.from_function(get_all_status, Person)
    plan = build_plan(method, indexer)
    assert isinstance(plan, TagValuesPlan)
    assert plan.field == "status"
    assert shape_for(plan, method).return_shape is ReturnShape.TAG_VALUES


def test_tag_values_needs_a_tag_field(indexer):
    def get_all_age(self) -> List[int]: ...

    def get_all_name(self) -> List[str]: ...

    def get_all_by_status(self, status: str) -> List[Person]: ...

    with pytest.raises(QueryPlanException):
        plan_for(get_all_age, indexer)
    with pytest.raises(QueryPlanException):
        plan_for(get_all_name, indexer)
    assert isinstance(plan_for(get_all_by_status, indexer), SearchPlan)


def test_autocomplete_plan(indexer):
    def autocomplete_name(self, prefix: str) -> List[str]: ...

    plan = plan_for(autocomplete_name, indexer)
    assert isinstance(plan, AutocompletePlan)
    assert plan.dictionary == "sugg:Person:name"


# =============================================================================
# Aggregations
# =============================================================================

def test_aggregation_plan(indexer):
    @aggregation(
        "@status:{$status}",
        load=[Load("name"), Load("address.city", "city")],
        group_by=[
            GroupBy(
                ("department",),
                (
                    Reduce(ReducerFunction.COUNT, alias="headcount"),
                    Reduce(ReducerFunction.AVG, ("age",), "mean_age"),
                ),
            )
        ],
        apply=[Apply("double", "@headcount * 2")],
        filter=["@headcount > 1"],
        sort_by=[SortBy("headcount", ascending=False)],
        sort_by_max=10,
        timeout=500,
        verbatim=True,
    )
    def stats(self, status: str) -> List[Dict[str, Any]]: ...

    plan = plan_for(stats, indexer)
    assert isinstance(plan, AggregationPlan)
    assert plan.load == (("@name", None), ("@address_city", "city"))
    (group,) = plan.groups
    assert group.properties == ("department",)
    assert [r.output_name for r in group.reducers] == ["headcount", "mean_age"]
    assert group.reducers[1].args == ("@age",)
    assert plan.filters == ("@headcount > 1",)
    assert plan.apply == (("double", "@headcount * 2"),)
    assert plan.sort_by_max == 10
    assert (plan.timeout, plan.verbatim) == (500, True)


def test_quantile_without_percentile_fails_at_construction(indexer):
    @aggregation(group_by=[GroupBy(("department",), (Reduce(ReducerFunction.QUANTILE, ("age",)),))])
    def age_quantile(self) -> List[Dict[str, Any]]: ...

    with pytest.raises(IndexError):
        plan_for(age_quantile, indexer)


def test_unaliased_reducer_gets_generated_name(indexer):
    @aggregation(group_by=[GroupBy(("department",), (Reduce(ReducerFunction.SUM, ("age",)),))])
    def age_sum(self) -> Optional[Dict[str, Any]]: ...

    plan = plan_for(age_sum, indexer)
    assert plan.groups[0].reducers[0].output_name == "__generated_aliassumage"
