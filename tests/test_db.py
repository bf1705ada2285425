"""Tests for the sqlite inventory store."""

import json

import pytest

from kegup.modules.kegup_db import KegupDB, load_inventory_json
from kegup.modules.kegup_inventory import Bottle, Inventory, InventoryError, Keg


@pytest.fixture
def db():
    store = KegupDB(db_path=":memory:")
    yield store
    store.close()


def test_schema_version(db):
    assert db.get_meta("schema_version") == "1"


def test_add_and_get_package(db, make_pkg):
    pkg = make_pkg(
        "Foo",
        "1.0",
        "2.0",
        dependencies=("bar", "baz"),
        bottle=Bottle(tag="arm64_sonoma", download_size=5, installed_size=9),
        linked_version="1.0",
        pinned=True,
    )
    db.add_package(pkg)
    got = db.get_package("foo")
    assert got.name == "foo"
    assert got.dependencies == ("bar", "baz")
    assert got.bottle == Bottle(tag="arm64_sonoma", download_size=5, installed_size=9)
    assert got.kegs == (Keg("1.0", disk_usage=10, installed_at=1.0),)
    assert got.pinned
    assert got.outdated()


def test_add_package_replaces_children(db, make_pkg):
    db.add_package(make_pkg("a", dependencies=("b",)))
    db.add_package(make_pkg("a", dependencies=("c",)))
    assert db.get_deps("a") == ["c"]
    assert len(db.list_packages()) == 1


def test_children_require_known_package(db):
    with pytest.raises(InventoryError):
        db.add_dep("ghost", "b")
    with pytest.raises(InventoryError):
        db.add_keg("ghost", Keg("1.0"))


def test_transaction_rolls_back(db, make_pkg):
    with pytest.raises(ValueError):
        with db.transaction():
            db.add_package(make_pkg("a"))
            raise ValueError("boom")
    assert db.get_package("a") is None


def test_snapshot_is_detached(db, make_pkg):
    db.add_package(make_pkg("a", "1.0", "2.0"))
    inv = db.snapshot()
    db.add_package(make_pkg("b"))
    assert len(inv) == 1
    assert inv.get("a").outdated()

def test_import_export_json(tmp_path, make_pkg):
    src = tmp_path / "inv.json"
    inv = Inventory.of([make_pkg("a", dependencies=("b",)), make_pkg("b")])
    src.write_text(json.dumps(inv.to_dict()))

    store = KegupDB(db_path=str(tmp_path / "state" / "kegup.db"))
    assert store.import_json(str(src)) == 2
    dest = tmp_path / "out.json"
    store.export_json(str(dest))
    store.close()

    again = load_inventory_json(str(dest))
    assert sorted(p.name for p in again.all_packages()) == ["a", "b"]
    assert again.get("a").dependencies == ("b",)

def test_load_inventory_json_rejects_garbage(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(InventoryError):
        load_inventory_json(str(bad))
