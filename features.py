"""
Feature data model for the line stacking transform.

Input features, aggregated features and output features are plain
dataclasses holding a shapely geometry and an attribute mapping. The
FeatureSchema mirrors the attribute columns of the collection they belong to.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from shapely.geometry import LineString
from shapely.geometry.base import BaseGeometry

from errors import GeometryError, ValidationError

LINE_GEOMETRY_TYPES = ("LineString",)

AGG_COUNT_ATTRIBUTE_NAME = "agg_count"
WIDTH_ATTRIBUTE_NAME = "line_width"


@dataclass
class AttributeDef:
    """A named, typed attribute column."""
    name: str
    type_name: str = "str"


@dataclass
class FeatureSchema:
    """Geometry type and ordered attribute columns of a feature collection."""
    geometry_type: str = "LineString"
    attributes: List[AttributeDef] = field(default_factory=list)

    @property
    def attribute_names(self) -> List[str]:
        return [a.name for a in self.attributes]

    def has_attribute(self, name: str) -> bool:
        return any(a.name == name for a in self.attributes)

    def get_attribute(self, name: str) -> Optional[AttributeDef]:
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        return None


@dataclass
class Feature:
    """A line feature with its attributes."""
    id: Any
    geometry: BaseGeometry
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AggregatedFeature:
    """One feature per distinct aggregation key.

    Attributes:
        id: Id of the first merged input feature
        geometry: Geometry of the first merged input feature
        attributes: The aggregation key values by attribute name
        count: Number of input features merged into this one
    """
    id: Any
    geometry: BaseGeometry
    attributes: Dict[str, Any] = field(default_factory=dict)
    count: int = 1


@dataclass
class OutputFeature:
    """An offset copy of an aggregated feature, ready for rendering."""
    id: Any
    geometry: BaseGeometry
    attributes: Dict[str, Any] = field(default_factory=dict)


def validate_line_geometry(geometry: Optional[BaseGeometry]) -> LineString:
    """Check that a geometry is a usable line.

    Args:
        geometry: Geometry of an input feature

    Returns:
        The geometry itself

    Raises:
        ValidationError: If the geometry is not a LineString
        GeometryError: If the line is missing, empty or has fewer than 2 points
    """
    if geometry is None:
        raise GeometryError("Feature has no geometry")
    if geometry.geom_type not in LINE_GEOMETRY_TYPES:
        raise ValidationError(
            f"Input geometries have to be of type LineString, found {geometry.geom_type}"
        )
    if geometry.is_empty or len(geometry.coords) < 2:
        raise GeometryError("Invalid number of points in LineString (must be >= 2)")
    return geometry


def assert_line_schema(schema: FeatureSchema):
    """Fail if the collection does not hold line geometries."""
    if schema.geometry_type not in LINE_GEOMETRY_TYPES:
        raise ValidationError(
            f"The input collection has to contain geometries of type LineString, "
            f"but contains {schema.geometry_type}"
        )


def build_aggregated_schema(schema: FeatureSchema, key_attributes: Sequence[str]) -> FeatureSchema:
    """Schema of the aggregated features: the key attributes in key order."""
    attributes = []
    for name in key_attributes:
        attribute = schema.get_attribute(name)
        if attribute is None:
            raise ValidationError(
                f"The input collection has no attribute named '{name}'. "
                f"Available attributes: {', '.join(schema.attribute_names) or '(none)'}"
            )
        attributes.append(AttributeDef(attribute.name, attribute.type_name))
    return FeatureSchema(geometry_type=schema.geometry_type, attributes=attributes)


def build_output_schema(
    schema: FeatureSchema,
    count_attribute: str = AGG_COUNT_ATTRIBUTE_NAME,
    width_attribute: str = WIDTH_ATTRIBUTE_NAME
) -> FeatureSchema:
    """Append the merge count and line width attributes to a schema.

    Args:
        schema: Schema of the aggregated features
        count_attribute: Name of the integer merge count attribute
        width_attribute: Name of the line width attribute (pixels)

    Returns:
        New schema with all original attributes followed by the two new ones

    Raises:
        ValidationError: If one of the new names is already taken
    """
    for name in (count_attribute, width_attribute):
        if schema.has_attribute(name):
            raise ValidationError(
                f"The attribute name '{name}' is reserved for the output and "
                f"already exists in the input collection"
            )
    if count_attribute == width_attribute:
        raise ValidationError(f"Count and width attributes can not share the name '{count_attribute}'")

    attributes = [AttributeDef(a.name, a.type_name) for a in schema.attributes]
    attributes.append(AttributeDef(count_attribute, "int"))
    attributes.append(AttributeDef(width_attribute, "int"))
    return FeatureSchema(geometry_type=schema.geometry_type, attributes=attributes)


def coordinates_of(geometry: LineString) -> Tuple[Tuple[float, float], ...]:
    """The 2D coordinate sequence of a line."""
    return tuple((float(c[0]), float(c[1])) for c in geometry.coords)
