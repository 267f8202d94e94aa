"""Tests for the registry layer.

Covers:
- YamlRegistry lookups (definitions, metadata, operations, grids, aliases)
- find_operations in both directions and neighbour discovery
- identify() with and without name aliases
- Record validation and conversion to model operations
- load_document error handling
- Registry factory (get_registry, register_registry, list_registries)
"""

from __future__ import annotations

import json
import unittest
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from coordshift.core.exceptions import RegistryError
from coordshift.models.coordinate_system import ellipsoidal_2d
from coordshift.models.crs import (
    ComparisonCriterion,
    CompoundCrs,
    GeographicCrs,
    ProjectedCrs,
    VerticalCrs,
    wgs84_geographic,
)
from coordshift.models.datum import DatumEnsemble, GeodeticDatum
from coordshift.models.ellipsoid import get_ellipsoid
from coordshift.models.identifier import Identifier
from coordshift.models.operation import Conversion, Transformation
from coordshift.models.units import ARC_SECOND, PARTS_PER_MILLION
from coordshift.registry import factory
from coordshift.registry.base import Category
from coordshift.registry.factory import get_registry, list_registries, register_registry
from coordshift.registry.records import OperationRecord, ParameterRecord, RegistryDocument
from coordshift.registry.yaml_registry import YamlRegistry, load_document

EPSG = "EPSG"


def _id(code: str) -> Identifier:
    return Identifier(EPSG, code)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class TestLookups:
    """Definitions and metadata of the built-in catalogue."""

    def test_crs_definition_is_wkt(self, registry: YamlRegistry) -> None:
        text = registry.lookup_definition(EPSG, "4326")
        assert text.startswith('GEOGCRS["WGS 84"')

    def test_authority_case_insensitive(self, registry: YamlRegistry) -> None:
        assert registry.lookup_definition("epsg", "4326") == registry.lookup_definition(EPSG, "4326")

    def test_ellipsoid_definition(self, registry: YamlRegistry) -> None:
        text = registry.lookup_definition(EPSG, "7030", Category.ELLIPSOID)
        assert text.startswith('ELLIPSOID["WGS 84"')

    def test_datum_definition_by_string_category(self, registry: YamlRegistry) -> None:
        text = registry.lookup_definition(EPSG, "6267", "datum")
        assert "Clarke 1866" in text

    def test_operation_definition_is_json(self, registry: YamlRegistry) -> None:
        payload = json.loads(registry.lookup_definition(EPSG, "1241", Category.OPERATION))
        assert payload["name"] == "NAD27 to NAD83 (1)"
        assert payload["source"] == "EPSG:4267"
        assert payload["grids"] == ["conus"]

    def test_unknown_objects(self, registry: YamlRegistry) -> None:
        with pytest.raises(RegistryError, match="Unknown CRS EPSG:1"):
            registry.lookup_definition(EPSG, "1")
        with pytest.raises(RegistryError, match="Unknown ellipsoid"):
            registry.lookup_definition(EPSG, "1", Category.ELLIPSOID)
        with pytest.raises(RegistryError, match="Unknown operation"):
            registry.lookup_operation(EPSG, "1")

    def test_crs_metadata(self, registry: YamlRegistry) -> None:
        record = registry.lookup_crs_metadata(EPSG, "32632")
        assert record.name == "WGS 84 / UTM zone 32N"
        assert record.kind == "projected"
        assert record.area_of_use is not None
        assert record.area_of_use.bounds == (6.0, 0.0, 12.0, 84.0)
        assert not record.deprecated

    def test_authority_preference(self, registry: YamlRegistry) -> None:
        assert registry.authority_preference() == ["EPSG", "ESRI", "PROJ"]
        assert registry.authority_rank("epsg") == 0
        assert registry.authority_rank("ESRI") == 1
        assert registry.authority_rank("IGNF") == 3

    def test_grid_info(self, registry: YamlRegistry) -> None:
        grid = registry.grid_info("ntv2_0.gsb")
        assert grid is not None
        assert grid.full_name == "ca_nrc_ntv2_0.gsb"
        assert grid.direct_download
        assert not grid.open_license
        assert registry.grid_info("nope.gsb") is None

    def test_aliases(self, registry: YamlRegistry) -> None:
        aliases = registry.aliases("WGS84")
        assert "WGS_1984" in aliases
        assert "World Geodetic System 1984" in aliases
        assert "WGS84" not in aliases
        assert registry.aliases("d_wgs_1984") >= {"WGS84"}
        assert registry.aliases("Nowhere Datum") == set()


class TestListing:
    """authorities() and codes()."""

    def test_authorities(self, registry: YamlRegistry) -> None:
        assert registry.authorities() == ["EPSG"]

    def test_crs_codes_sorted_numerically(self, registry: YamlRegistry) -> None:
        codes = registry.codes("epsg")
        assert codes[:3] == ["3857", "4171", "4203"]
        assert codes[-1] == "32632"
        assert len(codes) == 15

    def test_object_codes(self, registry: YamlRegistry) -> None:
        assert registry.codes(EPSG, Category.ELLIPSOID) == ["7003", "7008", "7019", "7022", "7030"]
        assert registry.codes(EPSG, "datum") == ["6230", "6258", "6267", "6269"]

    def test_deprecated_operations(self, registry: YamlRegistry) -> None:
        assert "1312" not in registry.codes(EPSG, Category.OPERATION)
        codes = registry.codes(EPSG, Category.OPERATION, allow_deprecated=True)
        assert "1312" in codes
        assert {"1241", "1173", "10084"} <= set(codes)

    def test_unknown_authority(self, registry: YamlRegistry) -> None:
        assert registry.codes("IGNF") == []


class TestRegisteredCrs:
    """Parsed CRS objects."""

    def test_kinds(self, registry: YamlRegistry) -> None:
        assert isinstance(registry.crs(_id("4326")), GeographicCrs)
        assert isinstance(registry.crs(_id("32632")), ProjectedCrs)
        assert isinstance(registry.crs(_id("5773")), VerticalCrs)
        assert registry.crs(_id("4979")).axis_count == 3
        assert registry.crs(_id("4978")).kind.value == "geocentric"

    def test_identifier_and_area_from_record(self, registry: YamlRegistry) -> None:
        crs = registry.crs(_id("4267"))
        assert crs.identifier == _id("4267")
        assert crs.area_of_use is not None
        assert crs.area_of_use.name == "North America - NAD27"
        assert crs.area_of_use.crosses_antimeridian

    def test_memoised(self, registry: YamlRegistry) -> None:
        assert registry.crs(_id("4258")) is registry.crs(_id("4258"))

    def test_wgs84_ensemble(self, registry: YamlRegistry) -> None:
        crs = registry.crs(_id("4326"))
        assert isinstance(crs.datum, DatumEnsemble)
        assert crs.is_equivalent_to(wgs84_geographic())

    def test_all_definitions_parse(self, registry: YamlRegistry) -> None:
        for crs_id in registry.crs_ids():
            assert registry.crs(crs_id).identifier == crs_id


# ---------------------------------------------------------------------------
# Operations and graph
# ---------------------------------------------------------------------------


class TestFindOperations:
    def test_forward(self, registry: YamlRegistry) -> None:
        records = registry.find_operations(_id("4267"), _id("4269"))
        assert [r.code for r in records] == ["1241", "1243", "1312", "1313"]
        assert all(r.source_id == _id("4267") for r in records)

    def test_reverse_direction_included(self, registry: YamlRegistry) -> None:
        forward = registry.find_operations(_id("4267"), _id("4269"))
        reverse = registry.find_operations(_id("4269"), _id("4267"))
        assert reverse == forward
        assert reverse[0].source_id != _id("4269")

    def test_no_operations(self, registry: YamlRegistry) -> None:
        assert registry.find_operations(_id("4267"), _id("4258")) == []

    def test_neighbours(self, registry: YamlRegistry) -> None:
        assert registry.neighbours(_id("4326")) == {
            _id("4267"),
            _id("4269"),
            _id("4258"),
            _id("4203"),
        }
        assert registry.neighbours(_id("4979")) == {_id("5773")}
        assert registry.neighbours(_id("32632")) == set()


class TestOperationRecords:
    """Records converted to model operations."""

    def test_helmert_units(self, registry: YamlRegistry) -> None:
        op = registry.lookup_operation(EPSG, "1240").to_operation()
        assert isinstance(op, Transformation)
        assert op.method.code == "9607"
        assert op.accuracy == 1.0
        rotation = op.param("8608")
        assert rotation is not None
        assert rotation.unit is ARC_SECOND
        assert op.param("8611").unit is PARTS_PER_MILLION  # type: ignore[union-attr]

    def test_superseded_and_deprecated(self, registry: YamlRegistry) -> None:
        superseded = registry.lookup_operation(EPSG, "1236").to_operation()
        assert superseded.superseded_by == (_id("1237"),)
        assert registry.lookup_operation(EPSG, "1312").to_operation().deprecated

    def test_grids_take_registry_metadata(self, registry: YamlRegistry) -> None:
        record = registry.lookup_operation(EPSG, "10084")
        op = record.to_operation(grid_info=registry.grid_refs())
        assert op.grids[0].package_name == "proj-datumgrid-world"
        bare = record.to_operation()
        assert bare.grids[0].name == "egm96_15.gtx"
        assert bare.grids[0].url == ""

    def test_conversion_type(self) -> None:
        record = OperationRecord(
            authority="epsg",
            code=16032,  # type: ignore[arg-type]
            name="UTM zone 32N",
            type="conversion",
            source="epsg:4326",
            target="EPSG:32632",
            method=9807,  # type: ignore[arg-type]
            parameters=[ParameterRecord(code="8802", value=9.0, unit="degree")],
        )
        assert record.authority == "EPSG"
        assert record.source == "EPSG:4326"
        op = record.to_operation()
        assert isinstance(op, Conversion)
        assert op.accuracy == 0.0
        assert op.param("Longitude of natural origin").value == 9.0  # type: ignore[union-attr]

    def test_unknown_accuracy(self) -> None:
        record = OperationRecord(
            authority="EPSG", code="1", name="x", source="EPSG:1", target="EPSG:2", method="9603"
        )
        assert record.to_operation().accuracy == -1.0

    def test_invalid_records(self) -> None:
        with pytest.raises(ValidationError, match="AUTHORITY:CODE"):
            OperationRecord(authority="EPSG", code="1", name="x", source="4326", target="EPSG:2", method="9603")
        with pytest.raises(ValidationError, match="Unknown unit"):
            ParameterRecord(code="8605", value=1.0, unit="furlong")
        with pytest.raises(ValidationError, match="accuracy"):
            OperationRecord(
                authority="EPSG", code="1", name="x", source="EPSG:1", target="EPSG:2", method="9603", accuracy=-2
            )


# ---------------------------------------------------------------------------
# identify
# ---------------------------------------------------------------------------


class TestIdentify:
    def test_known_identifier_short_circuits(self, registry: YamlRegistry) -> None:
        assert registry.identify(wgs84_geographic()) == _id("4326")

    def test_by_equivalence(self, registry: YamlRegistry) -> None:
        anonymous = wgs84_geographic().replace(identifier=None, name="My WGS")
        assert registry.identify(anonymous) == _id("4326")

    def test_axis_order_only_ignored_when_lax(self, registry: YamlRegistry) -> None:
        lon_first = wgs84_geographic(lat_first=False)
        assert registry.identify(lon_first) == _id("4326")
        assert registry.identify(lon_first, ComparisonCriterion.EQUIVALENT) is None

    def test_datum_alias(self, registry: YamlRegistry) -> None:
        crs = GeographicCrs(
            "GCS_North_American_1927",
            GeodeticDatum("D_North_American_1927", get_ellipsoid("clrk66")),  # type: ignore[arg-type]
            ellipsoidal_2d(),
        )
        assert registry.identify(crs) == _id("4267")

    def test_compound_not_identified(self, registry: YamlRegistry) -> None:
        compound = CompoundCrs(
            "WGS 84 + EGM96 height",
            (wgs84_geographic().replace(identifier=None), registry.crs(_id("5773")).replace(identifier=None)),
        )
        assert registry.identify(compound) is None


# ---------------------------------------------------------------------------
# Data files
# ---------------------------------------------------------------------------


class TestLoadDocument:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(RegistryError, match="Cannot read registry file"):
            load_document(tmp_path / "missing.yaml")

    def test_bad_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("crs: [unclosed\n", encoding="utf-8")
        with pytest.raises(RegistryError, match="not valid YAML"):
            load_document(path)

    def test_schema_violation(self, tmp_path: Path) -> None:
        path = tmp_path / "invalid.yaml"
        path.write_text(
            "crs:\n"
            "  - {authority: EPSG, code: 1, name: x, kind: planar, definition: 'GEOGCRS[\"x\"]'}\n",
            encoding="utf-8",
        )
        with pytest.raises(RegistryError, match="is invalid"):
            load_document(path)

    def test_unknown_area_key(self) -> None:
        with pytest.raises(ValidationError, match="unknown area key"):
            RegistryDocument.model_validate(
                {"operations": [{"authority": "EPSG", "code": 1, "name": "x", "source": "EPSG:1",
                                 "target": "EPSG:2", "method": 9603, "area": "atlantis"}]}
            )

    def test_duplicate_codes(self) -> None:
        op = {"authority": "EPSG", "code": 1, "name": "x", "source": "EPSG:1", "target": "EPSG:2", "method": 9603}
        with pytest.raises(ValidationError, match="Duplicate registry code EPSG:1"):
            RegistryDocument.model_validate({"operations": [op, op]})

    def test_custom_file(self, tmp_path: Path) -> None:
        path = tmp_path / "site.yaml"
        path.write_text(
            "authority_preference: [SITE, EPSG]\n"
            "areas:\n"
            "  site: {west: 0, south: 50, east: 1, north: 51, name: Site}\n"
            "operations:\n"
            "  - {authority: site, code: A1, name: Local shift, source: 'EPSG:4326',\n"
            "     target: 'EPSG:4258', method: 9603, area: site,\n"
            "     parameters: [{code: 8605, value: 1.0, unit: metre}]}\n",
            encoding="utf-8",
        )
        custom = YamlRegistry(path)
        assert custom.authority_preference() == ["SITE", "EPSG"]
        record = custom.lookup_operation("SITE", "A1")
        area = record.to_operation().area_of_use
        assert area is not None
        assert area.name == "Site"
        assert custom.find_operations(_id("4258"), _id("4326")) == [record]


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestRegistryFactory(unittest.TestCase):
    """get_registry / register_registry / list_registries."""

    def setUp(self) -> None:
        self._loaders = patch.dict(factory._REGISTRY_LOADERS, clear=True)
        self._loaders.start()

    def tearDown(self) -> None:
        self._loaders.stop()

    def test_builtin_listed(self) -> None:
        assert list_registries() == ["builtin"]

    def test_builtin_created(self) -> None:
        registry = get_registry()
        assert isinstance(registry, YamlRegistry)
        assert registry.name == "builtin"

    def test_register_custom(self) -> None:
        custom = YamlRegistry()
        register_registry("site", lambda: custom)
        assert get_registry("site") is custom
        assert list_registries() == ["builtin", "site"]

    def test_unknown_registry(self) -> None:
        with self.assertRaises(RegistryError) as ctx:
            get_registry("nonexistent")
        assert "nonexistent" in str(ctx.exception)
        assert "Available: builtin" in str(ctx.exception)

    def test_empty_name_rejected(self) -> None:
        with self.assertRaises(ValueError):
            register_registry("", YamlRegistry)
