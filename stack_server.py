#!/usr/bin/env python3
"""
Line Stacks - Web Server

A simple Flask server that:
1. Returns the default request parameters
2. Accepts a GeoJSON feature collection plus parameters via POST and
   returns the stacked lines as GeoJSON

Usage:
    python stack_server.py

Then POST to http://localhost:5000/api/stack:
    {
        "collection": {"type": "FeatureCollection", "features": [...]},
        "parameters": {"attributes": "line_id", "outputBBOX": [0, 0, 1000, 1000],
                       "outputWidth": 1000, "outputHeight": 1000}
    }
"""

import logging

import geopandas as gpd
from flask import Flask, jsonify, request, Response

from errors import StackProcessError, ValidationError
from feature_io import (
    features_from_geodataframe,
    prepare_geodataframe,
    result_to_geodataframe,
    schema_from_geodataframe,
)
from line_stacks import aggregate_as_line_stacks
from stack_config import StackParameters

logger = logging.getLogger(__name__)

app = Flask(__name__)


def collection_to_geodataframe(collection) -> gpd.GeoDataFrame:
    """Build a GeoDataFrame from a GeoJSON FeatureCollection dict."""
    if not isinstance(collection, dict) or collection.get("type") != "FeatureCollection":
        raise ValidationError("'collection' has to be a GeoJSON FeatureCollection")
    features = collection.get("features") or []
    crs = None
    crs_info = collection.get("crs")
    if isinstance(crs_info, dict):
        crs = crs_info.get("properties", {}).get("name")
    if not features:
        return gpd.GeoDataFrame(geometry=gpd.GeoSeries([], crs=crs))
    try:
        gdf = gpd.GeoDataFrame.from_features(features, crs=crs)
    except Exception as e:
        raise ValidationError(f"Could not read the feature collection: {e}") from e
    if "id" not in gdf.columns and features and all("id" in f for f in features):
        gdf.index = [f["id"] for f in features]
    return gdf


@app.route('/api/defaults', methods=['GET'])
def get_defaults():
    """Get the default request parameters."""
    return jsonify(StackParameters().to_dict())


@app.route('/api/stack', methods=['POST'])
def stack_lines():
    """Run the line stacking transform on the posted collection."""
    body = request.get_json(silent=True)
    if not body:
        return jsonify({'error': 'No request body provided'}), 400
    if not isinstance(body, dict):
        return jsonify({'error': 'The request body has to be a JSON object'}), 400

    try:
        params = StackParameters.from_dict(body.get('parameters') or {})
        bbox_crs = params.output_bbox.crs if params.output_bbox is not None else None
        gdf = prepare_geodataframe(collection_to_geodataframe(body.get('collection')), bbox_crs)

        result = aggregate_as_line_stacks(
            features_from_geodataframe(gdf),
            schema_from_geodataframe(gdf),
            params
        )
    except StackProcessError as e:
        logger.warning("Rejected stacking request: %s", e)
        return jsonify({'error': str(e)}), 400

    output = result_to_geodataframe(result, crs=gdf.crs)
    return Response(output.to_json(), mimetype='application/geo+json')


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    print("Starting Line Stacks server at http://localhost:5000")
    app.run(debug=False, port=5000, threaded=True)
