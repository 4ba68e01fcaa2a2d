from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]


def test_every_subpackage_is_found_by_plain_package_discovery():
    setuptools = pytest.importorskip("setuptools")

    packages = setuptools.find_packages(where=str(ROOT / "src"), include=["verifyci*"])

    assert {"verifyci", "verifyci.ui", "verifyci.git_facts", "verifyci.capabilities"} <= set(packages)
