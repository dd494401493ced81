#!/usr/bin/env python3
"""
Test that all PortKeeper modules import correctly
"""

import importlib

import pytest


MODULES = [
    "portkeeper",
    "portkeeper.app",
    "portkeeper.classifier",
    "portkeeper.exceptions",
    "portkeeper.grouping",
    "portkeeper.handlers",
    "portkeeper.logger",
    "portkeeper.main",
    "portkeeper.models",
    "portkeeper.notifier",
    "portkeeper.parser",
    "portkeeper.port_monitor",
    "portkeeper.preferences",
    "portkeeper.sources",
    "portkeeper.state",
    "portkeeper.terminator",
    "portkeeper.tunnels",
    "portkeeper.watch",
]


@pytest.mark.parametrize("module", MODULES)
def test_module_imports(module):
    assert importlib.import_module(module) is not None


def test_dependencies_available():
    import psutil
    import pydantic
    import tornado

    assert tornado.version_info >= (6, 0)
    assert psutil.version_info >= (5, 8)
    assert pydantic.VERSION.startswith("2")


def test_package_exports():
    import portkeeper

    assert portkeeper.__version__
    for name in portkeeper.__all__:
        assert hasattr(portkeeper, name)
