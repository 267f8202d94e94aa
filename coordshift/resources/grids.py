"""Decoders for GTX (vertical) and NTv2 (horizontal) correction grids.

Both grids interpolate bilinearly between the four nodes around a point.
Inputs and outputs are radians; interpolation results come with a per-point
``ErrorCode`` array (``NONE``, ``COORD_TRANSFM_OUTSIDE_GRID`` or
``COORD_TRANSFM_GRID_AT_NODATA``).

GTX layout (big-endian):
    header  ``south, west, dlat, dlon`` (float64 degrees), ``rows, cols`` (int32)
    body    ``rows * cols`` float32 offsets, row 0 at the south edge

NTv2 layout (either byte order, detected from ``NUM_OREC == 11``):
    11 overview records of 16 bytes, then per sub-grid 11 header records and
    ``GS_COUNT`` 16-byte nodes (lat shift, lon shift, lat acc, lon acc as
    float32 arc-seconds).  Longitudes are positive west and each node row runs
    east to west.
"""

from __future__ import annotations

import dataclasses
import logging
import struct
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from coordshift.core.constants import ARCSEC_TO_RAD, GTX_NODATA, RAD_TO_DEG
from coordshift.core.exceptions import ErrorCode
from coordshift.resources.base import GridFormatError

if TYPE_CHECKING:
    from coordshift.resources.base import GridHandle

logger = logging.getLogger(__name__)

_EDGE_EPS = 1e-9
_NODATA_TOL = 1e-4

_GTX_HEADER = struct.Struct(">ddddii")

_NTV2_RECORD = 16
_NTV2_HEADER_RECORDS = 11
_NTV2_MAGIC = b"NUM_OREC"


# ---------------------------------------------------------------------------
# Interpolation
# ---------------------------------------------------------------------------


def _bilinear(
    values: np.ndarray,
    fx: np.ndarray,
    fy: np.ndarray,
    *,
    wrap: bool = False,
    nodata: np.ndarray | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Interpolate ``values[row, col, band]`` at fractional node positions.

    Returns ``(result[n, bands], codes[n])``; rows that fail hold NaN.
    """
    rows, cols, bands = values.shape
    n = fx.shape[0]
    result = np.full((n, bands), np.nan)
    codes = np.full(n, int(ErrorCode.COORD_TRANSFM_OUTSIDE_GRID), dtype=np.int64)

    finite = np.isfinite(fx) & np.isfinite(fy)
    fx = np.where(finite, fx, 0.0)
    fy = np.where(finite, fy, 0.0)
    if wrap:
        fx = np.mod(fx, cols)
        inside_x = np.ones(n, dtype=bool)
    else:
        inside_x = (fx >= -_EDGE_EPS) & (fx <= cols - 1 + _EDGE_EPS)
    inside = finite & inside_x & (fy >= -_EDGE_EPS) & (fy <= rows - 1 + _EDGE_EPS)
    if not inside.any():
        return result, codes

    x = fx[inside]
    y = np.clip(fy[inside], 0.0, rows - 1)
    if wrap:
        i0 = np.floor(x).astype(np.int64) % cols
        i1 = (i0 + 1) % cols
    else:
        x = np.clip(x, 0.0, cols - 1)
        i0 = np.minimum(np.floor(x).astype(np.int64), cols - 2)
        i1 = i0 + 1
    j0 = np.minimum(np.floor(y).astype(np.int64), rows - 2)
    j1 = j0 + 1
    tx = (x - np.floor(x)) if wrap else (x - i0)
    ty = y - j0

    corners = (
        (j0, i0, (1.0 - tx) * (1.0 - ty)),
        (j0, i1, tx * (1.0 - ty)),
        (j1, i0, (1.0 - tx) * ty),
        (j1, i1, tx * ty),
    )
    acc = np.zeros((x.shape[0], bands))
    missing = np.zeros(x.shape[0], dtype=bool)
    for j, i, weight in corners:
        acc += values[j, i] * weight[:, None]
        if nodata is not None:
            missing |= nodata[j, i] & (weight > 0.0)

    inside_idx = np.flatnonzero(inside)
    result[inside_idx] = acc
    codes[inside_idx] = int(ErrorCode.NONE)
    if missing.any():
        bad = inside_idx[missing]
        result[bad] = np.nan
        codes[bad] = int(ErrorCode.COORD_TRANSFM_GRID_AT_NODATA)
    return result, codes


# ---------------------------------------------------------------------------
# GTX
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VerticalGrid:
    """A GTX geoid/offset grid (metres on a regular lon/lat lattice)."""

    name: str
    south: float
    west: float
    dlat: float
    dlon: float
    values: np.ndarray = field(repr=False)

    @property
    def rows(self) -> int:
        return self.values.shape[0]

    @property
    def cols(self) -> int:
        return self.values.shape[1]

    @property
    def is_global(self) -> bool:
        return self.cols * self.dlon >= 360.0 - _EDGE_EPS

    def offsets(self, lon: np.ndarray, lat: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Interpolated offsets (metres) at *lon*/*lat* radians."""
        lon_deg = np.asarray(lon, dtype=np.float64) * RAD_TO_DEG
        lat_deg = np.asarray(lat, dtype=np.float64) * RAD_TO_DEG
        if not self.is_global:
            # Bring longitudes into the grid's own 360 window.
            lon_deg = self.west + np.mod(lon_deg - self.west + _EDGE_EPS, 360.0) - _EDGE_EPS
        fx = (lon_deg - self.west) / self.dlon
        fy = (lat_deg - self.south) / self.dlat
        nodata = np.isnan(self.values) | (np.abs(self.values - GTX_NODATA) < _NODATA_TOL)
        result, codes = _bilinear(
            self.values[:, :, None], fx, fy, wrap=self.is_global, nodata=nodata
        )
        return result[:, 0], codes


def read_gtx(name: str, payload: bytes) -> VerticalGrid:
    if len(payload) < _GTX_HEADER.size:
        raise GridFormatError(name, "GTX file shorter than its header")
    south, west, dlat, dlon, rows, cols = _GTX_HEADER.unpack_from(payload, 0)
    if rows < 2 or cols < 2 or dlat <= 0 or dlon <= 0:
        raise GridFormatError(name, f"Invalid GTX header rows={rows} cols={cols}")
    expected = _GTX_HEADER.size + rows * cols * 4
    if len(payload) != expected:
        raise GridFormatError(name, f"GTX size {len(payload)} does not match header ({expected})")
    if west >= 180.0:
        west -= 360.0
    values = np.frombuffer(payload, dtype=">f4", count=rows * cols, offset=_GTX_HEADER.size)
    values = values.astype(np.float64).reshape(rows, cols)
    logger.debug("Decoded GTX grid | grid=%s | rows=%d | cols=%d", name, rows, cols)
    return VerticalGrid(name, south, west, dlat, dlon, values)


# ---------------------------------------------------------------------------
# NTv2
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubGrid:
    """One NTv2 sub-grid, stored west to east and south to north (degrees)."""

    name: str
    parent: str
    south: float
    west: float
    dlat: float
    dlon: float
    shifts: np.ndarray = field(repr=False)  # [row, col, (dlat_sec, dlon_sec east-positive)]
    depth: int = 0

    @property
    def rows(self) -> int:
        return self.shifts.shape[0]

    @property
    def cols(self) -> int:
        return self.shifts.shape[1]

    @property
    def north(self) -> float:
        return self.south + (self.rows - 1) * self.dlat

    @property
    def east(self) -> float:
        return self.west + (self.cols - 1) * self.dlon

    def covers(self, lon_deg: np.ndarray, lat_deg: np.ndarray) -> np.ndarray:
        return (
            (lon_deg >= self.west - _EDGE_EPS)
            & (lon_deg <= self.east + _EDGE_EPS)
            & (lat_deg >= self.south - _EDGE_EPS)
            & (lat_deg <= self.north + _EDGE_EPS)
        )


@dataclass(frozen=True)
class HorizontalGrid:
    """An NTv2 grid file: sub-grids ordered deepest first."""

    name: str
    subgrids: tuple[SubGrid, ...]

    def shifts(self, lon: np.ndarray, lat: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(dlon, dlat, codes)`` in radians at *lon*/*lat* radians.

        Each point uses the most detailed sub-grid that covers it.
        """
        lon_deg = np.asarray(lon, dtype=np.float64) * RAD_TO_DEG
        lat_deg = np.asarray(lat, dtype=np.float64) * RAD_TO_DEG
        n = lon_deg.shape[0]
        dlon = np.full(n, np.nan)
        dlat = np.full(n, np.nan)
        codes = np.full(n, int(ErrorCode.COORD_TRANSFM_OUTSIDE_GRID), dtype=np.int64)
        pending = np.isfinite(lon_deg) & np.isfinite(lat_deg)
        for sub in self.subgrids:
            if not pending.any():
                break
            hit = pending & sub.covers(lon_deg, lat_deg)
            if not hit.any():
                continue
            idx = np.flatnonzero(hit)
            fx = (lon_deg[idx] - sub.west) / sub.dlon
            fy = (lat_deg[idx] - sub.south) / sub.dlat
            result, sub_codes = _bilinear(sub.shifts, fx, fy)
            dlat[idx] = result[:, 0] * ARCSEC_TO_RAD
            dlon[idx] = result[:, 1] * ARCSEC_TO_RAD
            codes[idx] = sub_codes
            pending[idx] = False
        return dlon, dlat, codes


def _ntv2_byte_order(payload: bytes) -> str:
    if struct.unpack_from("<i", payload, 8)[0] == _NTV2_HEADER_RECORDS:
        return "<"
    if struct.unpack_from(">i", payload, 8)[0] == _NTV2_HEADER_RECORDS:
        return ">"
    raise ValueError("NUM_OREC is not 11 in either byte order")


def _ntv2_records(payload: bytes, offset: int) -> dict[str, bytes]:
    records = {}
    for index in range(_NTV2_HEADER_RECORDS):
        start = offset + index * _NTV2_RECORD
        key = payload[start : start + 8].decode("ascii", "replace").strip().rstrip("\x00")
        records[key] = payload[start + 8 : start + _NTV2_RECORD]
    return records


def read_ntv2(name: str, payload: bytes) -> HorizontalGrid:
    try:
        order = _ntv2_byte_order(payload)
        overview = _ntv2_records(payload, 0)
        num_files = struct.unpack(order + "i", overview["NUM_FILE"][:4])[0]
        offset = _NTV2_HEADER_RECORDS * _NTV2_RECORD
        raw: list[SubGrid] = []
        for _ in range(num_files):
            header = _ntv2_records(payload, offset)

            def number(key: str, header: dict[str, bytes] = header) -> float:
                return struct.unpack(order + "d", header[key])[0]

            s_lat, n_lat = number("S_LAT"), number("N_LAT")
            e_long, w_long = number("E_LONG"), number("W_LONG")
            lat_inc, long_inc = number("LAT_INC"), number("LONG_INC")
            count = struct.unpack(order + "i", header["GS_COUNT"][:4])[0]
            rows = int(round((n_lat - s_lat) / lat_inc)) + 1
            cols = int(round((w_long - e_long) / long_inc)) + 1
            if rows < 2 or cols < 2 or rows * cols != count:
                raise ValueError(f"sub-grid size {rows}x{cols} does not match GS_COUNT={count}")
            offset += _NTV2_HEADER_RECORDS * _NTV2_RECORD
            nodes = np.frombuffer(payload, dtype=order + "f4", count=count * 4, offset=offset)
            offset += count * _NTV2_RECORD
            nodes = nodes.astype(np.float64).reshape(rows, cols, 4)
            # Columns run east to west and longitude shifts are positive west.
            shifts = np.stack([nodes[:, ::-1, 0], -nodes[:, ::-1, 1]], axis=-1)
            raw.append(
                SubGrid(
                    name=header["SUB_NAME"].decode("ascii", "replace").strip(),
                    parent=header["PARENT"].decode("ascii", "replace").strip(),
                    south=s_lat / 3600.0,
                    west=-w_long / 3600.0,
                    dlat=lat_inc / 3600.0,
                    dlon=long_inc / 3600.0,
                    shifts=shifts,
                )
            )
    except (KeyError, ValueError, struct.error) as exc:
        raise GridFormatError(name, f"Invalid NTv2 grid: {exc}") from exc

    parents = {sub.name: sub.parent for sub in raw}

    def depth(sub_name: str) -> int:
        level, seen = 0, set()
        parent = parents.get(sub_name, "NONE")
        while parent in parents and parent not in seen:
            seen.add(parent)
            level += 1
            parent = parents[parent]
        return level

    subgrids = sorted(
        (dataclasses.replace(sub, depth=depth(sub.name)) for sub in raw),
        key=lambda sub: -sub.depth,
    )
    logger.debug("Decoded NTv2 grid | grid=%s | subgrids=%d", name, len(subgrids))
    return HorizontalGrid(name, tuple(subgrids))


Grid = VerticalGrid | HorizontalGrid


def decode_grid(name: str, payload: bytes) -> Grid:
    """Decode *payload*, sniffing NTv2 by its first record key."""
    if payload[:8] == _NTV2_MAGIC:
        return read_ntv2(name, payload)
    return read_gtx(name, payload)


def load_grid(handle: GridHandle) -> Grid:
    """Read and decode a whole grid from *handle*."""
    return decode_grid(handle.name, handle.read_all())

