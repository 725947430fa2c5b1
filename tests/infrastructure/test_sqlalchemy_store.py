"""SqlAlchemyStore / sql_compiler — tagged trees and plans against a real (SQLite) session."""

import pytest

from policy_crud.core.errors import NotFoundError
from policy_crud.core.mutation_diff import MutationPlan, ToManyWrite
from policy_crud.core.order_by import OrderTerm
from policy_crud.core.where_tree import (
    MATCH_ALL,
    Combinator,
    CombinatorKind,
    Leaf,
    Operator,
    Qualifier,
    Relation,
)
from policy_crud.infrastructure.sqlalchemy_store import SqlAlchemyStore, _load_targets
from tests.services.models import Country, Post, User

posts = SqlAlchemyStore(Post)
users = SqlAlchemyStore(User)


async def test_id_field_taken_from_primary_key():
    assert posts.id_field == "id"
    assert SqlAlchemyStore(Country).coerce_id("7") == 7


async def test_uncoercible_key_is_not_found():
    with pytest.raises(NotFoundError):
        SqlAlchemyStore(Country).coerce_id("seven")


@pytest.mark.parametrize("key", [1.7, True, "1.5"])
async def test_fractional_or_boolean_integer_key_is_not_found(key):
    with pytest.raises(NotFoundError):
        SqlAlchemyStore(Country).coerce_id(key)


async def test_integral_float_key_is_coerced():
    assert SqlAlchemyStore(Country).coerce_id(2.0) == 2


async def test_find_first_serializes_only_included_relations(test_db, seed):
    where = Leaf("id", Operator.EQUALS, seed["alice"])
    bare = await users.find_first(test_db, where, {})
    assert "posts" not in bare
    assert bare["email"] == "alice@x.io"

    nested = await users.find_first(test_db, where, {"posts": {"comments": {}}, "profile": {}})
    assert nested["profile"]["bio"] == "Alice bio"
    assert sum(len(p["comments"]) for p in nested["posts"]) == 2


async def test_find_first_returns_none_without_match(test_db, seed):
    assert await users.find_first(test_db, Leaf("email", Operator.EQUALS, "x"), {}) is None


async def test_find_many_orders_skips_and_takes(test_db, seed):
    rows = await posts.find_many(test_db, MATCH_ALL, {}, [OrderTerm((), "title", "desc")], 1, 1)
    assert [r["title"] for r in rows] == ["Draft"]


async def test_empty_or_matches_nothing_and_empty_not_matches_all(test_db, seed):
    assert await posts.count(test_db, Combinator(CombinatorKind.OR, ())) == 0
    assert await posts.count(test_db, Combinator(CombinatorKind.NOT, ())) == 3


async def test_not_list_excludes_rows_matching_any_child(test_db, seed):
    where = Combinator(CombinatorKind.NOT, (
        Leaf("title", Operator.EQUALS, "Hello"),
        Leaf("title", Operator.EQUALS, "Draft"),
    ))
    rows = await posts.find_many(test_db, where, {}, [], 0, 10)
    assert [r["title"] for r in rows] == ["Bob post"]


async def test_relation_qualifiers_compile_to_exists(test_db, seed):
    spam = Leaf("body", Operator.CONTAINS, "spam", insensitive=True)
    assert await posts.count(test_db, Relation("comments", Qualifier.SOME, spam)) == 1
    assert await posts.count(test_db, Relation("comments", Qualifier.NONE, spam)) == 2
    assert await posts.count(test_db, Relation("author", Qualifier.IS_NOT, None)) == 3


async def test_to_many_filter_does_not_duplicate_rows(test_db, seed):
    any_comment = Relation("comments", Qualifier.SOME, Leaf("body", Operator.NOT, None))
    rows = await posts.find_many(test_db, any_comment, {}, [], 0, 10)
    assert len(rows) == 1


async def test_like_wildcards_in_operand_are_escaped(test_db, seed):
    assert await posts.count(test_db, Leaf("title", Operator.CONTAINS, "%")) == 0
    assert await posts.count(test_db, Leaf("title", Operator.STARTS_WITH, "He")) == 1
    assert await posts.count(test_db, Leaf("title", Operator.ENDS_WITH, "POST", insensitive=True)) == 1


async def test_list_and_comparison_operators(test_db, seed):
    assert await posts.count(test_db, Leaf("title", Operator.IN, ["Hello", "Draft"])) == 2
    assert await posts.count(test_db, Leaf("title", Operator.NOT_IN, ["Hello"])) == 2
    assert await posts.count(test_db, Leaf("title", Operator.GTE, "Draft")) == 2


async def test_insensitive_mode_applies_to_every_operator(test_db, seed):
    assert await posts.count(test_db, Leaf("title", Operator.EQUALS, "HELLO", insensitive=True)) == 1
    assert await posts.count(test_db, Leaf("title", Operator.NOT, "hello", insensitive=True)) == 2
    assert await posts.count(
        test_db, Leaf("title", Operator.IN, ["HELLO", "draft"], insensitive=True),
    ) == 2
    assert await posts.count(
        test_db, Leaf("title", Operator.NOT_IN, ["BOB POST"], insensitive=True),
    ) == 2
    assert await posts.count(test_db, Leaf("title", Operator.GTE, "dRAFT", insensitive=True)) == 2


async def test_order_by_null_to_one_keeps_rows(test_db, seed):
    await posts.update(
        test_db, seed["draft"],
        MutationPlan(scalars={"author_id": None}, relations=()),
    )
    rows = await posts.find_many(
        test_db, MATCH_ALL, {}, [OrderTerm(("author",), "email", "asc")], 0, 10,
    )
    assert len(rows) == 3


async def test_connect_missing_target_is_not_found(test_db, seed):
    plan = MutationPlan(
        scalars={},
        relations=(ToManyWrite("categories", ("nope",), ()),),
    )
    with pytest.raises(NotFoundError):
        await posts.update(test_db, seed["hello"], plan)


async def test_connect_ids_deduplicated_after_coercion(test_db, seed):
    pid = seed["portugal"]
    targets = await _load_targets(test_db, Country, [pid, str(pid)], "country")
    assert len(targets) == 1
    assert targets[0].name == "Portugal"


async def test_delete_missing_record_is_not_found(test_db, seed):
    with pytest.raises(NotFoundError):
        await posts.delete(test_db, "ghost")
