# tests/memory/test_expressions.py

import math

import pytest

from async_search_repository.base.exceptions import QuerySyntaxError
from async_search_repository.memory.expressions import compile_expression, truthy

ROW = {"age": "31", "name": "Alice", "headcount": 3, "email": None, "empty": ""}


def run(expression: str, missing_allowed=None):
    return compile_expression(expression, missing_allowed)(ROW.get)


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("@age > 30", 1.0),
        ("@age >= 32", 0.0),
        ("@headcount * 2 + 1", 7.0),
        ("(@headcount + 1) * 2", 8.0),
        ("2 ^ 3 ^ 2", 512.0),
        ("-@headcount", -3.0),
        ("10 % 4", 2.0),
        ("@name == 'Alice'", 1.0),
        ('@name != "Bob"', 1.0),
        ("@age > 30 && @headcount < 3", 0.0),
        ("@age > 30 || @headcount < 3", 1.0),
        ("!(@age > 30)", 0.0),
        ("upper(@name)", "ALICE"),
        ("lower(@name)", "alice"),
        ("strlen(@name)", 5.0),
        ("substr(@name, 1, 3)", "lic"),
        ("startswith(@name, 'Al')", 1.0),
        ("contains(@name, 'l')", 1.0),
        ("abs(-2.5)", 2.5),
        ("floor(2.7)", 2.0),
        ("ceil(2.1)", 3.0),
        ("sqrt(16)", 4.0),
        ("exists(@name)", 1.0),
        ("exists(@email)", 0.0),
        ("exists(@empty)", 0.0),
        ("!exists(@email)", 1.0),
    ],
)
def test_expressions(expression, expected):
    assert run(expression) == expected


def test_division_by_zero_is_nan():
    assert math.isnan(run("@headcount / 0"))


def test_ismissing_requires_missing_tracking():
    assert run("ismissing(@email)", lambda field: field == "email") == 1.0
    assert run("!ismissing(@name)", lambda field: True) == 1.0
    with pytest.raises(QuerySyntaxError):
        run("ismissing(@name)", lambda field: field == "email")


@pytest.mark.parametrize(
    "expression",
    ["", "@age >", "unknown(@age)", "upper(@a, @b)", "exists('x')", "(@age", "@age $ 2"],
)
def test_malformed_expressions_raise(expression):
    with pytest.raises(QuerySyntaxError):
        compile_expression(expression)


def test_truthiness():
    assert truthy(1.0)
    assert not truthy(0.0)
    assert not truthy("0")
    assert truthy("yes")
    assert not truthy(None)
    assert not truthy("")
