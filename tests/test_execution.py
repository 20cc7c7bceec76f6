# tests/test_execution.py
"""End-to-end execution of repository methods against the in-memory backend."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from async_search_repository.base.fields import Distance, Point
from async_search_repository.base.method import (
    Apply,
    GroupBy,
    Load,
    Reduce,
    SearchLanguage,
    SortBy,
    aggregation,
    query,
)
from async_search_repository.base.plan import ReducerFunction
from async_search_repository.base.requests import FilterStep, LimitStep
from async_search_repository.base.results import (
    AggregationResult,
    AutoCompleteOptions,
    Page,
    Pageable,
    SearchResult,
    Sort,
    Suggestion,
)
from tests.conftest import Person, PersonName, Scorecard


def ids(entities) -> List[str]:
    return [e.id for e in entities]


# =============================================================================
# Direct search
# =============================================================================

async def test_page_total_counts_all_matches(store, people, make_query, logger):
    def find_by_status(self, status: str, pageable: Pageable) -> Page[Person]: ...

    await store(*people)
    page = await make_query(find_by_status).execute(["active", Pageable(0, 2)], logger)
    assert isinstance(page, Page)
    assert len(page) == 2
    assert page.total_elements == 3
    assert page.total_pages == 2
    assert page.has_next


async def test_empty_collection_argument_skips_the_backend(store, people, backend, make_query, logger):
    def find_by_status_in(self, statuses: List[str]) -> List[Person]: ...

    await store(*people)
    assert await make_query(find_by_status_in).execute([[]], logger) == []
    assert backend.calls == []


async def test_in_clause_matches_any_value(store, people, make_query, logger):
    def find_by_status_in(self, statuses: List[str]) -> List[Person]: ...

    await store(*people)
    result = await make_query(find_by_status_in).execute([["inactive", "retired"]], logger)
    assert ids(result) == ["4", "5"]


async def test_numeric_equality_with_a_collection_matches_any_element(
    indexer, backend, mapper, make_query, logger
):
    def find_by_scores(self, scores: List[int]) -> List[Scorecard]: ...

    definition = indexer.register(Scorecard)
    for card in (Scorecard(id="1", scores=[1, 2]), Scorecard(id="2", scores=[3]),
                 Scorecard(id="3", scores=[9])):
        await backend.put(definition.key_for(card.id), mapper.encode(card), logger)

    result = await make_query(find_by_scores, Scorecard).execute([[1, 3]], logger)
    assert sorted(ids(result)) == ["1", "2"]
    (request,) = backend.called("search")
    assert request.query == "(@scores:[1 1] | @scores:[3 3])"


async def test_pageable_sort_wins_over_method_order(store, people, make_query, logger):
    def find_by_status_order_by_age_desc(self, status: str, pageable: Pageable) -> Page[Person]: ...

    await store(*people)
    q = make_query(find_by_status_order_by_age_desc)
    assert ids(await q.execute(["active", Pageable(0, 2)], logger)) == ["3", "1"]
    assert ids(await q.execute(["active", Pageable(0, 2, Sort.by("age"))], logger)) == ["2", "1"]


async def test_nested_property(store, people, make_query, logger):
    def find_by_address_city(self, city: str) -> List[Person]: ...

    await store(*people)
    (alice,) = await make_query(find_by_address_city).execute(["paris"], logger)
    assert alice.address.street == "Rue de Rivoli"


async def test_single_result_and_mixed_clauses(store, people, make_query, logger):
    def find_by_nickname(self, nickname: str) -> Optional[Person]: ...

    def find_by_department_and_age_between(self, department: str, low: int, high: int) -> List[Person]: ...

    await store(*people)
    carol = await make_query(find_by_nickname).execute(["cw"], logger)
    assert carol.name == "Carol White"
    assert await make_query(find_by_nickname).execute(["nobody"], logger) is None

    result = await make_query(find_by_department_and_age_between).execute(["A", 25, 40], logger)
    assert ids(result) == ["1", "2"]


async def test_geo_radius(store, people, make_query, logger):
    def find_by_location_near(self, point: Point, distance: Distance) -> List[Person]: ...

    await store(*people)
    result = await make_query(find_by_location_near).execute(
        [Point(2.35, 48.85), Distance(10, "km")], logger
    )
    assert ids(result) == ["1"]


async def test_count_and_exists(store, people, backend, make_query, logger):
    def count_by_status(self, status: str) -> int: ...

    def exists_by_status(self, status: str) -> bool: ...

    await store(*people)
    assert await make_query(count_by_status).execute(["active"], logger) == 3
    (request,) = backend.called("search")
    assert request.to_args() == [
        "PersonIdx", "@status:{active}", "NOCONTENT", "LIMIT", "0", "0", "DIALECT", "1"
    ]
    assert await make_query(exists_by_status).execute(["inactive"], logger) is True
    assert await make_query(exists_by_status).execute(["retired"], logger) is False


async def test_full_text_search(store, people, backend, make_query, logger):
    def search(self, text: str, language: SearchLanguage) -> List[Person]: ...

    await store(*people)
    result = await make_query(search).execute(["rivoli", SearchLanguage.FRENCH], logger)
    assert ids(result) == ["1"]
    (request,) = backend.called("search")
    assert request.language == "french"


async def test_template_query(store, people, backend, make_query, logger):
    @query("@age:[$low $high]", sort_by="age")
    def in_age_range(self, low: int, high: int) -> List[Person]: ...

    await store(*people)
    result = await make_query(in_age_range).execute([20, 35], logger)
    assert ids(result) == ["2", "1"]
    (request,) = backend.called("search")
    assert request.query == "@age:[20 35]"


async def test_closed_projection_returns_only_its_fields(store, people, backend, make_query, logger):
    def find_by_status(self, status: str) -> List[PersonName]: ...

    await store(*people)
    result = await make_query(find_by_status).execute(["active"], logger)
    assert [p.name for p in result] == ["Alice Smith", "Bob Jones", "Carol White"]
    assert all(isinstance(p, PersonName) for p in result)
    (request,) = backend.called("search")
    assert request.return_fields == (("$.name", "name"),)


async def test_map_results_and_raw_search_result(store, people, make_query, logger):
    def find_by_department(self, department: str) -> List[Dict[str, Any]]: ...

    def find_by_status(self, status: str) -> SearchResult: ...

    await store(*people)
    rows = await make_query(find_by_department).execute(["B"], logger)
    assert [row["name"] for row in rows] == ["Carol White", "Erin Black"]

    result = await make_query(find_by_status).execute(["inactive"], logger)
    assert isinstance(result, SearchResult)
    assert [d.id for d in result.documents] == ["Person:4", "Person:5"]


async def test_datetimes_survive_the_round_trip(store, people, make_query, logger):
    def find_by_nickname(self, nickname: str) -> Optional[Person]: ...

    joined = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)
    await store(people[2].model_copy(update={"joined": joined}))
    carol = await make_query(find_by_nickname).execute(["cw"], logger)
    assert carol.joined == joined


# =============================================================================
# Null checks
# =============================================================================

async def test_null_check_runs_an_existence_filter_aggregation(store, people, backend, make_query, logger):
    def find_by_email_is_null(self) -> List[Person]: ...

    await store(*people)
    result = await make_query(find_by_email_is_null).execute([], logger)
    assert ids(result) == ["2", "5"]

    (request,) = backend.called("aggregate")
    assert FilterStep("ismissing(@email)") in request.steps
    assert backend.called("get") == ["Person:2", "Person:5"]
    assert backend.called("search") == []


async def test_null_check_without_missing_tracking_uses_exists(store, people, backend, make_query, logger):
    def find_by_status_and_nickname_is_not_null(self, status: str) -> List[Person]: ...

    def find_by_nickname_is_null(self) -> List[Person]: ...

    await store(*people)
    result = await make_query(find_by_status_and_nickname_is_not_null).execute(["active"], logger)
    assert ids(result) == ["3"]
    (request,) = backend.called("aggregate")
    assert request.query == "@status:{active}"
    assert FilterStep("exists(@nickname)") in request.steps

    backend.calls.clear()
    assert ids(await make_query(find_by_nickname_is_null).execute([], logger)) == ["1", "2", "4", "5"]
    (request,) = backend.called("aggregate")
    assert FilterStep("!exists(@nickname)") in request.steps


async def test_paged_null_check_reports_the_full_total(store, people, backend, make_query, logger):
    def find_by_email_is_null(self, pageable: Pageable) -> Page[Person]: ...

    await store(*people)
    page = await make_query(find_by_email_is_null).execute([Pageable(0, 1)], logger)
    assert ids(page) == ["2"]
    assert page.total_elements == 2
    (request,) = backend.called("aggregate")
    assert request.steps[-1] == LimitStep(0, 1)


async def test_null_check_inside_a_disjunction_has_no_plan(store, people, backend, make_query, logger):
    def find_by_status_or_email_is_null(self, status: str) -> List[Person]: ...

    await store(*people)
    q = make_query(find_by_status_or_email_is_null)
    assert q.plan is None
    assert await q.execute(["inactive"], logger) is None
    assert backend.calls == []


# =============================================================================
# Delete by query
# =============================================================================

async def test_delete_count_without_matches_issues_no_delete(store, people, backend, make_query, logger):
    def delete_by_status(self, status: str) -> int: ...

    await store(*people)
    assert await make_query(delete_by_status).execute(["retired"], logger) == 0
    assert backend.called("delete") == []


async def test_delete_count_returns_matched_keys(store, people, backend, make_query, logger):
    def delete_by_status(self, status: str) -> int: ...

    await store(*people)
    assert await make_query(delete_by_status).execute(["inactive"], logger) == 2
    assert backend.called("delete") == [["Person:4", "Person:5"]]
    assert backend.called("get_many") == []
    assert await backend.get("Person:4", logger) is None
    assert await backend.get("Person:1", logger) is not None


async def test_delete_returning_entities(store, people, backend, make_query, logger):
    def delete_by_department(self, department: str) -> List[Person]: ...

    await store(*people)
    deleted = await make_query(delete_by_department).execute(["B"], logger)
    assert ids(deleted) == ["3", "5"]
    assert deleted[0].nickname == "cw"
    assert backend.called("get_many") == [["Person:3", "Person:5"]]
    assert await backend.get("Person:3", logger) is None
    assert await backend.get("Person:5", logger) is None


async def test_delete_with_null_check(store, people, make_query, logger):
    def delete_by_status_and_email_is_null(self, status: str) -> int: ...

    def count_by_status(self, status: str) -> int: ...

    await store(*people)
    assert await make_query(delete_by_status_and_email_is_null).execute(["inactive"], logger) == 1
    assert await make_query(count_by_status).execute(["inactive"], logger) == 1


# =============================================================================
# Aggregations
# =============================================================================

@aggregation(
    group_by=[GroupBy(("department",), (Reduce(ReducerFunction.COUNT, alias="headcount"),))],
    sort_by=[SortBy("department")],
)
def headcount_by_department(self) -> List[Dict[str, Any]]: ...


async def test_group_by_department(store, people, make_query, logger):
    await store(*people)
    rows = await make_query(headcount_by_department).execute([], logger)
    assert rows == [
        {"department": "A", "headcount": "3"},
        {"department": "B", "headcount": "2"},
    ]


async def test_aggregation_with_parameters_and_apply(store, people, backend, make_query, logger):
    @aggregation(
        "@status:{$status}",
        load=[Load("name"), Load("age")],
        apply=[Apply("age_in_months", "@age * 12")],
        filter=["@age > $min_age"],
        sort_by=[SortBy("age", ascending=False)],
    )
    def older_members(self, status: str, min_age: int) -> List[Dict[str, Any]]: ...

    await store(*people)
    rows = await make_query(older_members).execute(["active", 26], logger)
    assert rows == [
        {"name": "Carol White", "age": "42", "age_in_months": "504"},
        {"name": "Alice Smith", "age": "31", "age_in_months": "372"},
    ]
    (request,) = backend.called("aggregate")
    assert request.query == "@status:{active}"
    assert FilterStep("@age > 26") in request.steps


async def test_aggregation_result_shapes(store, people, make_query, logger):
    @aggregation(
        group_by=[GroupBy(("department",), (Reduce(ReducerFunction.AVG, ("age",), "mean_age"),))],
        sort_by=[SortBy("department")],
    )
    def raw_stats(self) -> AggregationResult: ...

    @aggregation(group_by=[GroupBy(("status",), (Reduce(ReducerFunction.COUNT, alias="n"),))])
    def status_groups(self) -> int: ...

    @aggregation(
        group_by=[GroupBy(("department",), (Reduce(ReducerFunction.SUM, ("age",)),))],
        sort_by=[SortBy("department")],
    )
    def first_department(self) -> Optional[Dict[str, Any]]: ...

    await store(*people)
    result = await make_query(raw_stats).execute([], logger)
    assert isinstance(result, AggregationResult)
    assert result.rows[1]["mean_age"] == "30.5"

    assert await make_query(status_groups).execute([], logger) == 2
    assert await make_query(first_department).execute([], logger) == {
        "department": "A",
        "__generated_aliassumage": "114",
    }


async def test_paged_aggregation(store, people, make_query, logger):
    @aggregation(load=[Load("name")], sort_by=[SortBy("name")])
    def names(self, pageable: Pageable) -> Page[Dict[str, Any]]: ...

    await store(*people)
    page = await make_query(names).execute([Pageable(1, 2)], logger)
    assert [row["name"] for row in page] == ["Carol White", "Dave Brown"]
    assert page.total_elements == 5


def test_quantile_without_percentile_fails_at_construction(make_query):
    @aggregation(group_by=[GroupBy(("department",), (Reduce(ReducerFunction.QUANTILE, ("age",)),))])
    def age_quantile(self) -> List[Dict[str, Any]]: ...

    with pytest.raises(IndexError):
        make_query(age_quantile)


# =============================================================================
# Tag values, autocomplete and structure delegates
# =============================================================================

async def test_tag_values(store, people, make_query, logger):
    def get_all_status(self) -> List[str]: ...

    await store(*people)
    assert await make_query(get_all_status).execute([], logger) == ["active", "inactive"]


async def test_tag_values_of_a_non_tag_field_has_no_plan(store, people, backend, make_query, logger):
    def get_all_name(self) -> List[str]: ...

    await store(*people)
    q = make_query(get_all_name)
    assert q.plan is None
    assert await q.execute([], logger) is None
    assert backend.calls == []


async def test_autocomplete(backend, make_query, logger):
    def autocomplete_name(
        self, prefix: str, options: Optional[AutoCompleteOptions] = None
    ) -> List[Suggestion]: ...

    backend.suggest_add("sugg:Person:name", "Alice Smith", 2.0)
    backend.suggest_add("sugg:Person:name", "Albert Jones", 1.0)
    backend.suggest_add("sugg:Person:name", "Bob Jones", 3.0)

    q = make_query(autocomplete_name)
    assert [s.string for s in await q.execute(["al"], logger)] == ["Alice Smith", "Albert Jones"]

    hits = await q.execute(["bo", AutoCompleteOptions(with_score=True)], logger)
    assert hits == [Suggestion("Bob Jones", 3.0)]
    with pytest.raises(ValueError):
        await q.execute([], logger)


async def test_bloom_and_cuckoo_delegates(backend, make_query, logger):
    def exists_by_email(self, email: str) -> bool: ...

    def exists_by_nickname(self, nickname: str) -> bool: ...

    backend.bf_add("bf:Person:email", "alice@example.com")
    backend.cf_add("cf:Person:nickname", "cw")

    by_email = make_query(exists_by_email)
    assert by_email.plan is None
    assert await by_email.execute(["alice@example.com"], logger) is True
    assert await by_email.execute(["bob@example.com"], logger) is False
    assert await make_query(exists_by_nickname).execute(["cw"], logger) is True
    assert backend.calls == []


async def test_count_min_delegate(backend, make_query, logger):
    def count_department(self, department) -> int: ...

    backend.cms_incrby("cms:Person:department", "A", 3)
    backend.cms_incrby("cms:Person:department", "B")

    q = make_query(count_department)
    assert await q.execute(["A"], logger) == 3
    assert await q.execute([["A", "B", "C"]], logger) == [3, 1, 0]


# =============================================================================
# Unsupported methods
# =============================================================================

async def test_unknown_method_has_no_plan(make_query, backend, logger):
    def frobnicate_by_status(self, status: str) -> List[Person]: ...

    q = make_query(frobnicate_by_status)
    assert q.plan is None
    assert await q.execute(["active"], logger) is None
    assert backend.calls == []
