"""Tests for the list field helpers."""

from odh_notebook_operator.keyed import NamedList, remove_matching, replace_or_append


def test_upsert_replaces_in_place():
    items = NamedList([{"name": "a", "v": 1}, {"name": "b", "v": 2}])
    items.upsert({"name": "a", "v": 3})
    items.upsert({"name": "c", "v": 4})
    assert items.to_list() == [
        {"name": "a", "v": 3},
        {"name": "b", "v": 2},
        {"name": "c", "v": 4},
    ]


def test_empty_input():
    assert NamedList(None).to_list() == []


def test_replace_or_append_keeps_repeated_names():
    mounts = [
        {"name": "data", "mountPath": "/opt/app-root/src"},
        {"name": "data", "mountPath": "/opt/app-root/.local"},
    ]
    replace_or_append(mounts, {"name": "trusted-ca", "mountPath": "/etc/pki"})
    replace_or_append(mounts, {"name": "trusted-ca", "mountPath": "/etc/pki/new"})
    assert [m["mountPath"] for m in mounts] == ["/opt/app-root/src", "/opt/app-root/.local", "/etc/pki/new"]


def test_remove_matching():
    items = [{"name": "a"}, {"name": "b", "drop": True}, {"name": "a"}]
    assert remove_matching(items, lambda item: item.get("drop"))
    assert not remove_matching(items, lambda item: item.get("drop"))
    assert items == [{"name": "a"}, {"name": "a"}]
