"""Shared fixtures: in-memory inventories and a logger writing to a string buffer."""

import io

import pytest
from rich.console import Console

from kegup.modules.kegup_config import ConfigStore
from kegup.modules.kegup_inventory import Bottle, Inventory, Keg, Package
from kegup.modules.kegup_logger import KegupLogger


def _make_package(name, version="1.0", latest=None, installed=True, disk_usage=10, **kw):
    kegs = kw.pop("kegs", None)
    if kegs is None:
        kegs = (Keg(version, disk_usage=disk_usage, installed_at=1.0),) if installed else ()
    return Package(name=name, version=version, latest_version=latest or version, kegs=tuple(kegs), **kw)


def _make_bottle(download=10, installed=20, tag="all"):
    return Bottle(tag=tag, download_size=download, installed_size=installed)


@pytest.fixture
def make_pkg():
    return _make_package


@pytest.fixture
def make_bottle():
    return _make_bottle


@pytest.fixture
def make_inventory():
    def build(*packages):
        return Inventory.of(packages)
    return build


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=200, no_color=True, highlight=False)


@pytest.fixture
def logger(console):
    return KegupLogger(module="test", console=console)


@pytest.fixture
def output(console):
    def read():
        return console.file.getvalue()
    return read


@pytest.fixture
def cfg():
    store = ConfigStore.load(search_default_paths=False, env={})
    store.set("logging.to_file", False)
    return store
