"""The distribution must not claim generic top-level module names."""

import tomllib
from pathlib import Path

PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


def test_no_top_level_modules_installed():
    with PYPROJECT.open("rb") as f:
        setuptools_config = tomllib.load(f)["tool"]["setuptools"]

    assert setuptools_config["py-modules"] == []
    assert setuptools_config["packages"] == []
    assert "package-dir" not in setuptools_config
