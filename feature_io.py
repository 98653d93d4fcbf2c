"""
Conversion between GeoDataFrames and the transform's feature model.

Reading and writing files goes through geopandas, so any format it
supports (GeoJSON, GeoPackage, Shapefile) can be stacked.
"""

import logging
from pathlib import Path
from typing import Any, List, Optional, Tuple

import geopandas as gpd
import pandas as pd

from errors import ValidationError
from features import AttributeDef, Feature, FeatureSchema
from line_stacks import StackResult

logger = logging.getLogger(__name__)

DRIVERS = {
    ".gpkg": "GPKG",
    ".geojson": "GeoJSON",
    ".json": "GeoJSON",
    ".shp": "ESRI Shapefile",
}


def _type_name(dtype) -> str:
    if pd.api.types.is_bool_dtype(dtype):
        return "bool"
    if pd.api.types.is_integer_dtype(dtype):
        return "int"
    if pd.api.types.is_float_dtype(dtype):
        return "float"
    return "str"


def to_python_value(value: Any) -> Any:
    """Plain Python value for a cell; NaN and NA become None."""
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if hasattr(value, "item"):
        return value.item()
    return value


def geometry_type_of(gdf: gpd.GeoDataFrame) -> str:
    """Common geometry type of a GeoDataFrame ('LineString' when empty)."""
    geometries = gdf.geometry.dropna()
    types = set(geometries[~geometries.is_empty].geom_type)
    if not types:
        return "LineString"
    if len(types) > 1:
        return "Geometry"
    return types.pop()


def schema_from_geodataframe(gdf: gpd.GeoDataFrame) -> FeatureSchema:
    """Schema of a GeoDataFrame's attribute columns."""
    geometry_column = gdf.geometry.name
    attributes = [
        AttributeDef(str(column), _type_name(gdf[column].dtype))
        for column in gdf.columns
        if column != geometry_column
    ]
    return FeatureSchema(geometry_type=geometry_type_of(gdf), attributes=attributes)


def features_from_geodataframe(gdf: gpd.GeoDataFrame) -> List[Feature]:
    """Convert rows into Features, using the index as feature id."""
    geometry_column = gdf.geometry.name
    columns = [c for c in gdf.columns if c != geometry_column]
    features = []
    for index, row in gdf.iterrows():
        attributes = {str(c): to_python_value(row[c]) for c in columns}
        features.append(Feature(id=to_python_value(index), geometry=row[geometry_column], attributes=attributes))
    return features


def prepare_geodataframe(gdf: gpd.GeoDataFrame, bbox_crs=None) -> gpd.GeoDataFrame:
    """Reproject the input into the CRS of the output bounding box if both are known."""
    if bbox_crs is None or gdf.crs is None:
        return gdf
    if gdf.crs == bbox_crs:
        return gdf
    logger.info("Reprojecting input from %s to %s", gdf.crs, bbox_crs)
    return gdf.to_crs(bbox_crs)


def read_features(path, bbox_crs=None) -> Tuple[List[Feature], FeatureSchema, Optional[Any]]:
    """Read a vector file.

    Returns:
        Tuple of (features, schema, crs)
    """
    path = Path(path)
    if not path.exists():
        raise ValidationError(f"Input file not found: {path}")
    gdf = prepare_geodataframe(gpd.read_file(path), bbox_crs)
    return features_from_geodataframe(gdf), schema_from_geodataframe(gdf), gdf.crs


def result_to_geodataframe(result: StackResult, crs=None) -> gpd.GeoDataFrame:
    """GeoDataFrame with the result's attribute columns in schema order."""
    columns = result.schema.attribute_names
    rows = [
        {name: feature.attributes.get(name) for name in columns}
        for feature in result.features
    ]
    geometries = [feature.geometry for feature in result.features]
    index = [feature.id for feature in result.features]
    frame = pd.DataFrame(rows, columns=columns, index=index)
    return gpd.GeoDataFrame(frame, geometry=gpd.GeoSeries(geometries, index=index), crs=crs)


def write_result(result: StackResult, path, crs=None) -> Path:
    """Write the result to a file, picking the driver from the suffix."""
    path = Path(path)
    driver = DRIVERS.get(path.suffix.lower())
    if driver is None:
        raise ValidationError(
            f"Unsupported output format '{path.suffix}'. Use one of: {', '.join(sorted(DRIVERS))}"
        )
    path.parent.mkdir(parents=True, exist_ok=True)
    result_to_geodataframe(result, crs).to_file(path, driver=driver)
    return path
