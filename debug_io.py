"""
Debug output of generated geometries as SQL insert statements.

Only the geometries are written; load the file into a PostGIS table with a
`geom` column to inspect the result of a request.
"""

from pathlib import Path
from typing import Iterable


def sql_quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def feature_to_sql(feature, table: str) -> str:
    """INSERT statement for one feature's geometry."""
    return f"INSERT INTO {table} (geom) VALUES (ST_GeomFromText({sql_quote(feature.geometry.wkt)}));"


def dump_features_to_sql_file(features: Iterable, path, table: str) -> int:
    """Write one INSERT statement per feature to a file.

    Returns:
        Number of statements written
    """
    path = Path(path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)

    count = 0
    with open(path, "w", encoding="utf-8") as f:
        for feature in features:
            if feature.geometry is None:
                continue
            f.write(feature_to_sql(feature, table))
            f.write("\n")
            count += 1
    return count
