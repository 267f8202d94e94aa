"""Shared pytest fixtures for the coordshift test suite."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from coordshift.core.config import ContextConfig
from coordshift.core.context import Context
from coordshift.registry.yaml_registry import YamlRegistry
from tests.gridfiles import (
    CONUS_DLAT_SECONDS,
    CONUS_DLON_SECONDS,
    GEOID_UNDULATION_M,
    gtx_bytes,
    ntv2_bytes,
)


# ---------------------------------------------------------------------------
# Path and grid fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def grid_dir(tmp_path: Path) -> Path:
    """Directory holding a synthetic ``conus`` NTv2 and ``egm96_15.gtx`` geoid."""
    directory = tmp_path / "grids"
    directory.mkdir()
    (directory / "conus").write_bytes(
        ntv2_bytes(20.0, -130.0, 55.0, -60.0, 5.0, CONUS_DLAT_SECONDS, CONUS_DLON_SECONDS)
    )
    (directory / "egm96_15.gtx").write_bytes(
        gtx_bytes(-90.0, -180.0, 90.0, 90.0, np.full((3, 4), GEOID_UNDULATION_M))
    )
    return directory


# ---------------------------------------------------------------------------
# Registry and context fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def registry() -> YamlRegistry:
    """The built-in registry, loaded once per session."""
    return YamlRegistry()


@pytest.fixture()
def context(registry: YamlRegistry, grid_dir: Path):
    """A context finding the synthetic grids locally, with the network off."""
    ctx = Context(
        config=ContextConfig(grid_directories=(str(grid_dir),), cache_enabled=False),
        registry=registry,
    )
    yield ctx
    ctx.close()


@pytest.fixture()
def offline_context(registry: YamlRegistry):
    """A context with no grids at all and the network off."""
    ctx = Context(config=ContextConfig(), registry=registry)
    yield ctx
    ctx.close()
