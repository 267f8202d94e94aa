"""Tests for proj-string parsing and serialisation.

Covers:
- Tokenising and pipeline expansion (global options, +inv)
- Operation proj-strings wrapped as PROJ-based conversions
- CRS proj-strings: datums, ellipsoids, axes, units, projections
- +towgs84 / +nadgrids binding to WGS 84
- Warnings for ignored keys and the grammar errors that abort parsing
- Serialising CRSs back to proj-strings
"""

from __future__ import annotations

from typing import ClassVar

import pytest

from coordshift.core.exceptions import CrsValidationError, ParseError
from coordshift.models.coordinate_system import AxisDirection
from coordshift.models.crs import (
    BoundCrs,
    GeocentricCrs,
    GeographicCrs,
    OtherCrs,
    ProjectedCrs,
    wgs84_geographic,
)
from coordshift.models.ellipsoid import GRS80_ELLIPSOID
from coordshift.models.units import FOOT
from coordshift.parsing import catalog
from coordshift.parsing.proj_string import (
    PROJ_OPERATION_NAME,
    ProjStep,
    crs_to_proj_string,
    is_crs_definition,
    is_proj_string,
    parse_pipeline,
    parse_proj_crs,
    parse_proj_operation,
    pipeline_has_inverse,
    projection_definition,
    step_ellipsoid,
    tokenize,
    utm_conversion,
)

# ---------------------------------------------------------------------------
# Tokens and pipelines
# ---------------------------------------------------------------------------


class TestTokenize:
    def test_keys_values_and_flags(self) -> None:
        assert tokenize("+proj=utm +zone=32 +south") == [
            ("proj", "utm"),
            ("zone", "32"),
            ("south", None),
        ]

    def test_plus_is_optional(self) -> None:
        assert tokenize("proj=longlat  ellps=GRS80") == [("proj", "longlat"), ("ellps", "GRS80")]

    def test_empty(self) -> None:
        with pytest.raises(ParseError, match="Empty"):
            tokenize("   ")

    def test_malformed(self) -> None:
        with pytest.raises(ParseError, match="Malformed"):
            tokenize("+proj=utm +=3")

    def test_detection(self) -> None:
        assert is_proj_string("+proj=longlat +datum=WGS84")
        assert not is_proj_string("EPSG:4326")
        assert not is_proj_string("")
        assert is_crs_definition("+proj=longlat +type=crs")
        assert not is_crs_definition("+proj=longlat")


class TestParsePipeline:
    """Pipeline expansion."""

    def test_single_operation(self) -> None:
        (step,) = parse_pipeline("+proj=helmert +x=1 +inv")
        assert step.name == "helmert"
        assert step.inverse is True
        assert step.params == (("x", "1"),)

    def test_global_options_applied_to_each_step(self) -> None:
        steps = parse_pipeline(
            "+proj=pipeline +ellps=GRS80 +step +proj=cart +step +proj=cart +ellps=WGS84"
        )
        assert [s.get("ellps") for s in steps] == ["GRS80", "WGS84"]

    def test_pipeline_inverse_reverses(self) -> None:
        steps = parse_pipeline("+proj=pipeline +inv +step +proj=cart +step +proj=helmert +x=1 +inv")
        assert [(s.name, s.inverse) for s in steps] == [("helmert", False), ("cart", True)]

    @pytest.mark.parametrize(
        ("text", "message"),
        [
            ("+proj=utm +zone=32 +step", "only allowed in a pipeline"),
            ("+proj=pipeline", "no \\+step"),
            ("+proj=pipeline +step +proj=pipeline", "Nested"),
            ("+proj=pipeline +step +x=1", "exactly one"),
            ("+zone=32", "exactly one"),
        ],
    )
    def test_grammar_errors(self, text: str, message: str) -> None:
        with pytest.raises(ParseError, match=message):
            parse_pipeline(text)

    def test_has_inverse(self) -> None:
        assert pipeline_has_inverse("+proj=pipeline +step +proj=cart +step +proj=utm +zone=32")
        assert not pipeline_has_inverse("+proj=pipeline +step +proj=cart +step +proj=wag7")
        assert not pipeline_has_inverse("+proj=pipeline")


class TestProjStep:
    def test_accessors(self) -> None:
        step = ProjStep("helmert", (("x", "1.5"), ("exact", None), ("towgs84", "1,2,3")))
        assert step.has("exact")
        assert step.get("exact") == ""
        assert step.get("missing", "d") == "d"
        assert step.number("x") == 1.5
        assert step.number("exact", 7.0) == 7.0
        assert step.numbers("towgs84") == (1.0, 2.0, 3.0)

    def test_bad_number(self) -> None:
        step = ProjStep("helmert", (("x", "abc"),))
        with pytest.raises(ParseError, match="not a number"):
            step.number("x")

    def test_to_string_and_toggle(self) -> None:
        step = ProjStep("helmert", (("x", "1"), ("exact", None)))
        assert step.to_string() == "+proj=helmert +x=1 +exact"
        assert step.toggled().to_string() == "+proj=helmert +inv +x=1 +exact"

    def test_step_ellipsoid(self) -> None:
        assert step_ellipsoid(ProjStep("cart", (("ellps", "GRS80"),))) == GRS80_ELLIPSOID
        assert step_ellipsoid(ProjStep("cart", (("datum", "WGS84"),))).name == "WGS 84"


class TestParseProjOperation:
    def test_single_step(self) -> None:
        op = parse_proj_operation("+proj=utm +zone=32")
        assert op.name == PROJ_OPERATION_NAME
        assert op.method.name == catalog.PROJ_STRING_METHOD
        assert op.parameters[0].value == "+proj=utm +zone=32"

    def test_pipeline_normalised(self) -> None:
        op = parse_proj_operation("proj=pipeline step proj=unitconvert xy_in=deg step proj=utm zone=32")
        assert op.parameters[0].value == (
            "+proj=pipeline +step +proj=unitconvert +xy_in=deg +step +proj=utm +zone=32"
        )
        assert op.has_inverse


# ---------------------------------------------------------------------------
# CRS parsing
# ---------------------------------------------------------------------------


class TestParseGeographic:
    """Geographic and geocentric CRS strings."""

    def test_datum(self) -> None:
        crs, warnings = parse_proj_crs("+proj=longlat +datum=WGS84 +no_defs +type=crs")
        assert isinstance(crs, GeographicCrs)
        assert crs.datum.name == "World Geodetic System 1984"
        assert crs.cs.is_east_first()
        assert warnings == []

    def test_ellipsoid_only(self) -> None:
        crs, _ = parse_proj_crs("+proj=longlat +ellps=GRS80 +type=crs")
        assert crs.datum is not None
        assert crs.datum.name == "Unknown based on GRS 1980 ellipsoid"
        assert crs.ellipsoid == GRS80_ELLIPSOID

    def test_missing_ellipsoid_warns(self) -> None:
        crs, warnings = parse_proj_crs("+proj=longlat +type=crs")
        assert warnings == ["No ellipsoid given: assuming GRS80"]
        assert crs.ellipsoid == GRS80_ELLIPSOID

    def test_semi_major_only_is_sphere(self) -> None:
        crs, warnings = parse_proj_crs("+proj=longlat +a=6370000 +type=crs")
        assert crs.ellipsoid is not None
        assert crs.ellipsoid.is_sphere
        assert "assuming a sphere" in warnings[0]

    def test_explicit_figure(self) -> None:
        crs, _ = parse_proj_crs("+proj=longlat +a=6378137 +rf=298.257222101 +type=crs")
        assert crs.ellipsoid is not None
        assert crs.ellipsoid.is_equivalent_to(GRS80_ELLIPSOID)

    def test_axis_and_vertical_units(self) -> None:
        crs, _ = parse_proj_crs("+proj=latlong +ellps=WGS84 +axis=neu +vunits=ft +type=crs")
        assert isinstance(crs, GeographicCrs)
        assert crs.axis_count == 3
        assert crs.cs.axes[0].direction is AxisDirection.NORTH
        assert crs.cs.vertical_unit() == FOOT

    def test_prime_meridian(self) -> None:
        crs, _ = parse_proj_crs("+proj=longlat +ellps=clrk80ign +pm=paris +type=crs")
        assert crs.prime_meridian is not None
        assert crs.prime_meridian.name == "Paris"

    def test_numeric_prime_meridian(self) -> None:
        crs, _ = parse_proj_crs("+proj=longlat +ellps=WGS84 +pm=5.5 +type=crs")
        assert crs.prime_meridian is not None
        assert crs.prime_meridian.longitude_degrees == pytest.approx(5.5)

    def test_geocentric(self) -> None:
        crs, _ = parse_proj_crs("+proj=geocent +datum=WGS84 +units=km +type=crs")
        assert isinstance(crs, GeocentricCrs)
        assert crs.cs.horizontal_unit().name == "kilometre"

    @pytest.mark.parametrize("key", ["geoc", "geoidgrids=egm96_15.gtx"])
    def test_ignored_keys_warn(self, key: str) -> None:
        _, warnings = parse_proj_crs(f"+proj=longlat +ellps=WGS84 +{key} +type=crs")
        assert len(warnings) == 1
        assert "ignored" in warnings[0]


class TestParseBound:
    """+towgs84 and +nadgrids."""

    def test_towgs84(self) -> None:
        crs, _ = parse_proj_crs("+proj=longlat +ellps=clrk66 +towgs84=-8,160,176 +type=crs")
        assert isinstance(crs, BoundCrs)
        assert crs.hub_crs == wgs84_geographic()
        assert crs.transformation.method.code == "9603"
        assert crs.transformation.name == "Transformation from unknown to WGS84"

    def test_zero_towgs84_is_not_bound(self) -> None:
        crs, _ = parse_proj_crs("+proj=longlat +ellps=WGS84 +towgs84=0,0,0,0,0,0,0 +type=crs")
        assert isinstance(crs, GeographicCrs)

    def test_datum_with_default_grids(self) -> None:
        crs, _ = parse_proj_crs("+proj=longlat +datum=NAD27 +type=crs")
        assert isinstance(crs, BoundCrs)
        assert [g.name for g in crs.transformation.grids] == [
            "conus",
            "alaska",
            "ntv2_0.gsb",
            "ntv1_can.dat",
        ]
        assert crs.base_crs.datum is not None
        assert crs.base_crs.datum.name == "North American Datum 1927"

    def test_datum_with_default_towgs84(self) -> None:
        crs, _ = parse_proj_crs("+proj=longlat +datum=potsdam +type=crs")
        assert isinstance(crs, BoundCrs)
        assert crs.transformation.method.code == "9606"

    def test_explicit_nadgrids_override_datum(self) -> None:
        crs, _ = parse_proj_crs("+proj=longlat +datum=NAD27 +nadgrids=@conus +type=crs")
        assert isinstance(crs, BoundCrs)
        assert [g.name for g in crs.transformation.grids] == ["conus"]


class TestParseProjected:
    """Projected CRS strings."""

    def test_utm(self) -> None:
        crs, warnings = parse_proj_crs("+proj=utm +zone=32 +datum=WGS84 +units=m +no_defs +type=crs")
        assert isinstance(crs, ProjectedCrs)
        assert crs.conversion.name == "UTM zone 32N"
        assert crs.conversion.param("8802").value == 9.0  # type: ignore[union-attr]
        assert warnings == []

    def test_utm_south(self) -> None:
        crs, _ = parse_proj_crs("+proj=utm +zone=33 +south +ellps=GRS80 +type=crs")
        assert isinstance(crs, ProjectedCrs)
        assert crs.conversion.name == "UTM zone 33S"
        assert crs.conversion.param("8807").value == 10_000_000.0  # type: ignore[union-attr]

    @pytest.mark.parametrize("zone", ["", "+zone=0", "+zone=61", "+zone=3.5"])
    def test_bad_utm_zone(self, zone: str) -> None:
        with pytest.raises(ParseError, match="zone"):
            parse_proj_crs(f"+proj=utm {zone} +ellps=GRS80 +type=crs")

    METHOD_CASES: ClassVar[list[tuple[str, str]]] = [
        ("+proj=merc +ellps=WGS84", "9804"),
        ("+proj=merc +lat_ts=30 +ellps=WGS84", "9805"),
        ("+proj=lcc +lat_1=45 +lat_0=45 +ellps=GRS80", "9801"),
        ("+proj=lcc +lat_1=30 +lat_2=60 +ellps=GRS80", "9802"),
        ("+proj=stere +lat_0=90 +ellps=WGS84", "9810"),
        ("+proj=laea +lat_0=52 +lon_0=10 +ellps=GRS80", "9820"),
    ]

    @pytest.mark.parametrize(("text", "code"), METHOD_CASES)
    def test_method_selection(self, text: str, code: str) -> None:
        crs, _ = parse_proj_crs(text + " +type=crs")
        assert isinstance(crs, ProjectedCrs)
        assert crs.conversion.method.code == code

    def test_scale_alias_and_unknown_parameter(self) -> None:
        crs, warnings = parse_proj_crs(
            "+proj=tmerc +lon_0=3 +k=0.9996 +x_0=500000 +foo=1 +ellps=GRS80 +type=crs"
        )
        assert isinstance(crs, ProjectedCrs)
        assert crs.conversion.param("8805").value == 0.9996  # type: ignore[union-attr]
        assert warnings == ["Unknown parameter +foo ignored"]

    def test_uncatalogued_projection_kept_verbatim(self) -> None:
        crs, _ = parse_proj_crs("+proj=robin +lon_0=10 +ellps=WGS84 +type=crs")
        assert isinstance(crs, ProjectedCrs)
        assert crs.conversion.method.authority == catalog.PROJ_AUTHORITY
        assert crs.conversion.param("lon_0").value == 10.0  # type: ignore[union-attr]

    def test_foot_units(self) -> None:
        crs, _ = parse_proj_crs("+proj=tmerc +ellps=GRS80 +units=ft +type=crs")
        assert isinstance(crs, ProjectedCrs)
        assert crs.cs.horizontal_unit() == FOOT


class TestParseErrors:
    """Grammar errors."""

    ERROR_CASES: ClassVar[list[tuple[str, str]]] = [
        ("+proj=longlat +datum=nowhere", "Unknown datum"),
        ("+proj=longlat +ellps=potato", "Unknown ellipsoid"),
        ("+proj=longlat +ellps=WGS84 +axis=xyz", "Invalid \\+axis"),
        ("+proj=longlat +ellps=WGS84 +towgs84=1,2", "3 or 7"),
        ("+proj=longlat +R=-1", "positive"),
        ("+proj=tmerc +ellps=WGS84 +units=parsec", "Unknown unit"),
        ("+proj=tmerc +ellps=WGS84 +to_meter=0", "positive"),
        ("+proj=pipeline +step +proj=longlat +step +proj=cart", "does not describe a CRS"),
        ("+proj=longlat +ellps=WGS84 +type=coordinate_metadata", "Unsupported \\+type"),
    ]

    @pytest.mark.parametrize(("text", "message"), ERROR_CASES)
    def test_error(self, text: str, message: str) -> None:
        with pytest.raises(ParseError, match=message):
            parse_proj_crs(text)

    def test_warnings_kept_on_error(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            parse_proj_crs("+proj=longlat +geoc +datum=nowhere")
        assert exc_info.value.warnings == [
            "+geoc (geocentric latitude) is not supported and was ignored"
        ]
        assert exc_info.value.grammar_errors == ["Unknown datum +datum=nowhere"]


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


class TestCrsToProjString:
    """Rendering CRSs as +type=crs strings."""

    def test_wgs84(self) -> None:
        assert crs_to_proj_string(wgs84_geographic()) == "+proj=longlat +datum=WGS84 +no_defs +type=crs"

    def test_utm_zone_detected(self) -> None:
        crs, _ = parse_proj_crs("+proj=utm +zone=32 +datum=WGS84 +type=crs")
        assert crs.to_proj_string() == "+proj=utm +zone=32 +datum=WGS84 +units=m +no_defs +type=crs"

    def test_utm_south(self) -> None:
        crs, _ = parse_proj_crs("+proj=utm +zone=56 +south +ellps=GRS80 +type=crs")
        assert crs_to_proj_string(crs) == "+proj=utm +zone=56 +south +ellps=GRS80 +units=m +no_defs +type=crs"

    def test_towgs84_round_trip(self) -> None:
        text = "+proj=longlat +ellps=clrk66 +towgs84=-8,160,176 +no_defs +type=crs"
        crs, _ = parse_proj_crs(text)
        assert crs_to_proj_string(crs) == text

    def test_datum_grids_collapse_to_datum(self) -> None:
        crs, _ = parse_proj_crs("+proj=longlat +datum=NAD27 +type=crs")
        assert crs_to_proj_string(crs) == "+proj=longlat +datum=NAD27 +no_defs +type=crs"

    def test_explicit_nadgrids(self) -> None:
        crs, _ = parse_proj_crs("+proj=longlat +ellps=clrk66 +nadgrids=@conus +type=crs")
        assert crs_to_proj_string(crs) == "+proj=longlat +ellps=clrk66 +nadgrids=@conus +no_defs +type=crs"

    def test_sphere(self) -> None:
        crs, _ = parse_proj_crs("+proj=longlat +R=1000 +type=crs")
        assert crs_to_proj_string(crs) == "+proj=longlat +R=1000 +no_defs +type=crs"

    def test_unsupported_kind(self) -> None:
        with pytest.raises(CrsValidationError, match="no proj-string equivalent"):
            crs_to_proj_string(OtherCrs("mystery"))

    def test_projection_definition(self) -> None:
        crs, _ = parse_proj_crs("+proj=utm +zone=32 +datum=WGS84 +type=crs")
        assert isinstance(crs, ProjectedCrs)
        assert projection_definition(crs) == "+proj=utm +zone=32 +ellps=WGS84 +units=m"

    def test_utm_conversion_parameters(self) -> None:
        conversion = utm_conversion(60)
        assert conversion.param("8802").value == 177.0  # type: ignore[union-attr]
        assert conversion.param("8805").value == 0.9996  # type: ignore[union-attr]
