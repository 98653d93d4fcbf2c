"""
Map unit helpers for the line stacking transform.

This module provides the output bounding box of a render request and the
conversion from pixel distances on the output image to distances in map
units of the bounding box's coordinate system.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

from pyproj import CRS

from errors import ValidationError


@dataclass
class Bounds:
    """Represents a rectangular bounds in a coordinate system.

    Attributes:
        min_x: Western/left boundary
        max_x: Eastern/right boundary
        min_y: Southern/bottom boundary
        max_y: Northern/top boundary
        crs: Optional coordinate reference system of the bounds
    """
    min_x: float
    max_x: float
    min_y: float
    max_y: float
    crs: Optional[CRS] = None

    @property
    def width(self) -> float:
        """Width of the bounds (east-west extent)."""
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        """Height of the bounds (north-south extent)."""
        return self.max_y - self.min_y

    @property
    def is_degenerate(self) -> bool:
        """True if the bounds have no area."""
        return not (self.width > 0 and self.height > 0)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        """Return bounds as (min_x, min_y, max_x, max_y) tuple."""
        return (self.min_x, self.min_y, self.max_x, self.max_y)

    @classmethod
    def from_tuple(cls, values: Sequence[float], crs=None) -> 'Bounds':
        """Create bounds from a (min_x, min_y, max_x, max_y) sequence.

        Args:
            values: Four numbers in WMS BBOX order
            crs: Optional CRS in any form pyproj accepts (e.g. "EPSG:2056")

        Returns:
            The new Bounds
        """
        if len(values) != 4:
            raise ValidationError(
                f"A bounding box needs 4 values (minx, miny, maxx, maxy), got {len(values)}"
            )
        try:
            min_x, min_y, max_x, max_y = (float(v) for v in values)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid bounding box {list(values)!r}: {e}") from e
        return cls(
            min_x=min_x,
            max_x=max_x,
            min_y=min_y,
            max_y=max_y,
            crs=parse_crs(crs)
        )

    @classmethod
    def parse(cls, value: Union[str, Sequence]) -> 'Bounds':
        """Parse a bounding box request parameter.

        Accepts a sequence of four numbers or a WMS style string
        "minx,miny,maxx,maxy" with an optional fifth CRS element,
        e.g. "2600000,1200000,2601000,1201000,EPSG:2056".
        """
        if isinstance(value, Bounds):
            return value
        if isinstance(value, dict):
            missing = [k for k in ("min_x", "min_y", "max_x", "max_y") if k not in value]
            if missing:
                raise ValidationError(f"Bounding box is missing {', '.join(missing)}")
            return cls.from_tuple(
                (value["min_x"], value["min_y"], value["max_x"], value["max_y"]),
                crs=value.get("crs")
            )
        if isinstance(value, str):
            parts = [p.strip() for p in value.split(",") if p.strip()]
            crs = None
            if len(parts) == 5:
                crs = parts.pop()
            try:
                return cls.from_tuple([float(p) for p in parts], crs=crs)
            except ValueError as e:
                raise ValidationError(f"Invalid bounding box '{value}': {e}") from e
        if not isinstance(value, (list, tuple)):
            raise ValidationError(f"Invalid bounding box {value!r}")
        return cls.from_tuple(list(value))


def parse_crs(value) -> Optional[CRS]:
    """Normalize a CRS parameter, returning None when unset."""
    if value is None or value == "":
        return None
    if isinstance(value, CRS):
        return value
    try:
        return CRS.from_user_input(value)
    except Exception as e:
        raise ValidationError(f"Unknown coordinate reference system '{value}': {e}") from e


def ground_resolution(bounds: Bounds, width_px: int, height_px: int) -> float:
    """Calculate the map units covered by one output pixel.

    The x resolution (bounds width / image width) and y resolution
    (bounds height / image height) are averaged, so a request with a
    slightly distorted aspect ratio still gets one resolution applied to
    both offsets and widths.

    Args:
        bounds: Output bounding box in map units
        width_px: Output image width in pixels
        height_px: Output image height in pixels

    Returns:
        Map units per pixel
    """
    if width_px is None or width_px < 1:
        raise ValidationError(f"outputWidth has to be a positive value, but currently is {width_px}")
    if height_px is None or height_px < 1:
        raise ValidationError(f"outputHeight has to be a positive value, but currently is {height_px}")
    if bounds.is_degenerate:
        raise ValidationError(f"outputBBOX has no extent: {bounds.as_tuple()}")

    res_x = bounds.width / width_px
    res_y = bounds.height / height_px
    return (res_x + res_y) / 2


def pixel_distance_to_map_units(
    bounds: Bounds,
    width_px: int,
    height_px: int,
    distance_px: float
) -> float:
    """Convert a distance on the output image into map units.

    Args:
        bounds: Output bounding box in map units
        width_px: Output image width in pixels
        height_px: Output image height in pixels
        distance_px: Distance in pixels

    Returns:
        Distance in map units
    """
    return distance_px * ground_resolution(bounds, width_px, height_px)


class MapUnitConverter:
    """Pixel to map unit conversion bound to one output view.

    The resolution is computed once, so every conversion of a request uses
    the same factor for running offsets and line widths.
    """

    def __init__(self, bounds: Bounds, width_px: int, height_px: int):
        self.bounds = bounds
        self.width_px = width_px
        self.height_px = height_px
        self.resolution = ground_resolution(bounds, width_px, height_px)

    def to_map_units(self, distance_px: float) -> float:
        """Convert a pixel distance into map units."""
        return distance_px * self.resolution
