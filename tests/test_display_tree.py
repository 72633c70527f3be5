from __future__ import annotations

import json

import pytest

from kiosk_core.display_tree import (
    Group,
    Leaf,
    iter_leaves,
    leaf_count,
    parse_tree,
    serialize_tree,
    tree_to_document,
)
from kiosk_core.errors import MalformedConfig


def _leaf(url: str, reload: int = 0, on_load: str = "") -> dict:
    return {"url": url, "reload": reload, "onLoad": on_load}


def test_single_leaf_document_parses_to_leaf():
    tree = parse_tree(json.dumps(_leaf("https://a.example", 5000, "console.log('hi')")))
    assert tree == Leaf(url="https://a.example", reload_ms=5000, on_load="console.log('hi')")
    assert tree.reloads


def test_array_document_parses_to_group_in_order():
    tree = parse_tree(json.dumps([_leaf("a"), [_leaf("b"), _leaf("c")], _leaf("d")]))
    assert isinstance(tree, Group)
    assert [leaf.url for leaf in iter_leaves(tree)] == ["a", "b", "c", "d"]
    assert isinstance(tree.children[1], Group)


def test_empty_array_is_an_empty_group():
    tree = parse_tree("[]")
    assert tree == Group(())
    assert leaf_count(tree) == 0


def test_bytes_input_is_accepted():
    assert parse_tree(json.dumps(_leaf("x")).encode("utf-8")) == Leaf("x", 0, "")


def test_serialize_then_parse_preserves_tree():
    original = Group((Leaf("a", 1000, "x()"), Group((Leaf("b", 0, ""),)), Leaf("c", 2000, "")))
    assert parse_tree(serialize_tree(original)) == original


def test_tree_to_document_uses_wire_field_names():
    assert tree_to_document(Leaf("u", 10, "s")) == {"url": "u", "reload": 10, "onLoad": "s"}


def test_zero_reload_means_never():
    assert not Leaf("u", 0).reloads


def test_integral_float_reload_is_accepted():
    assert parse_tree(json.dumps({"url": "u", "reload": 1500.0, "onLoad": ""})).reload_ms == 1500


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        "",
        "42",
        '"leaf"',
        "null",
        '{"reload": 1, "onLoad": ""}',
        '{"url": 1, "reload": 1, "onLoad": ""}',
        '{"url": "u", "onLoad": ""}',
        '{"url": "u", "reload": "10", "onLoad": ""}',
        '{"url": "u", "reload": true, "onLoad": ""}',
        '{"url": "u", "reload": -1, "onLoad": ""}',
        '{"url": "u", "reload": 1.5, "onLoad": ""}',
        '{"url": "u", "reload": 1}',
        '[{"url": "u", "reload": 1, "onLoad": ""}, 3]',
    ],
)
def test_malformed_documents_raise(text):
    with pytest.raises(MalformedConfig):
        parse_tree(text)


def test_invalid_json_message_prefix():
    with pytest.raises(MalformedConfig) as excinfo:
        parse_tree("{oops")
    assert str(excinfo.value).startswith("Invalid config format")


def test_iter_leaves_handles_deep_nesting():
    node = Leaf("deep", 0)
    for _ in range(2000):
        node = Group((node,))
    assert [leaf.url for leaf in iter_leaves(node)] == ["deep"]
