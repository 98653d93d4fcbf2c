#!/usr/bin/env python3
"""
Stack duplicate lines of a vector file as parallel offset lines.

Usage:
    # Parameters from a JSON file (see stack_config.py for the names)
    python stack_lines.py routes.gpkg stacked.gpkg --config stack_params.json

    # Parameters on the command line
    python stack_lines.py routes.geojson stacked.geojson \\
        --attributes line_id,color --order-attribute sort_order \\
        --bbox 2600000,1200000,2610000,1210000,EPSG:2056 --width 1000 --height 1000

    # Without --bbox the extent of the input data is used
    python stack_lines.py routes.geojson stacked.geojson --width 2000 --height 1500
"""

import argparse
import logging
import sys
from pathlib import Path

import shapely

from errors import StackProcessError
from feature_io import read_features, write_result
from line_stacks import ProgressListener, aggregate_as_line_stacks
from map_utils import Bounds
from stack_config import StackParameters, load_parameters, split_attribute_names

# command line option -> StackParameters field
OPTION_FIELDS = {
    "attributes": "attributes",
    "order_attribute": "order_attribute",
    "invert_sides_attribute": "invert_sides_attribute",
    "min_line_width": "min_line_width",
    "max_line_width": "max_line_width",
    "spacing": "spacing_between_stack_entries",
    "custom_variable1": "script_custom_variable1",
    "custom_variable2": "script_custom_variable2",
    "width": "output_width",
    "height": "output_height",
    "debug_sql_file": "debug_sql_file",
}


def setup_logging(verbose: bool = False):
    """Log to the console; INFO with --verbose, WARNING otherwise."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


class PrintingProgress(ProgressListener):
    """Prints progress lines the way the other command line tools do."""

    def started(self):
        print("  Stacking lines...")

    def complete(self):
        print("  Stacking complete")


def build_parameters(args) -> StackParameters:
    """Combine the parameter file (if any) with command line overrides."""
    params = load_parameters(args.config) if args.config else StackParameters()

    for option, field_name in OPTION_FIELDS.items():
        value = getattr(args, option)
        if value is not None:
            setattr(params, field_name, value)
    params.attributes = split_attribute_names(params.attributes)

    if args.one_side:
        params.draw_on_both_sides = False
    if args.measure_durations:
        params.enable_duration_measurement = True
    if args.script:
        params.render_script = Path(args.script).read_text(encoding="utf-8")
    if args.bbox:
        params.output_bbox = Bounds.parse(args.bbox)
    return params


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Draw duplicate lines as stacks of parallel offset lines"
    )
    parser.add_argument("input", help="Input vector file with LineString features")
    parser.add_argument("output", help="Output file (.gpkg, .geojson, .json or .shp)")
    parser.add_argument("--config", help="JSON file with request parameters")
    parser.add_argument("--attributes", help="Comma separated attributes to aggregate by")
    parser.add_argument("--order-attribute", help="Integer attribute ordering the stack members")
    parser.add_argument("--invert-sides-attribute", help="Boolean attribute swapping the sides of a feature")
    parser.add_argument("--min-line-width", type=int, help="Minimum line width in pixels (default 8)")
    parser.add_argument("--max-line-width", type=int, help="Maximum line width in pixels (default 80)")
    parser.add_argument("--spacing", type=int, help="Spacing between stack entries in pixels (default 0)")
    parser.add_argument("--one-side", action="store_true", help="Draw the stacks on one side of the line only")
    parser.add_argument("--script", help="JavaScript file defining getFeatureWidth(featureLength, aggCount)")
    parser.add_argument("--custom-variable1", help="Value of the script global customVariable1")
    parser.add_argument("--custom-variable2", help="Value of the script global customVariable2")
    parser.add_argument("--bbox", help="Output bounding box 'minx,miny,maxx,maxy[,crs]' (default: data extent)")
    parser.add_argument("--width", type=int, help="Output image width in pixels")
    parser.add_argument("--height", type=int, help="Output image height in pixels")
    parser.add_argument("--debug-sql-file", help="Write the generated lines as SQL inserts to this file")
    parser.add_argument("--measure-durations", action="store_true", help="Log time spent in the processing steps")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        params = build_parameters(args)

        bbox_crs = params.output_bbox.crs if params.output_bbox is not None else None
        print(f"Loading {args.input}...")
        features, schema, crs = read_features(args.input, bbox_crs)
        print(f"  Loaded {len(features)} features")

        if params.output_bbox is None and features:
            min_x, min_y, max_x, max_y = shapely.total_bounds([f.geometry for f in features])
            params.output_bbox = Bounds(min_x=min_x, max_x=max_x, min_y=min_y, max_y=max_y, crs=crs)
            print(f"  Using data extent as bounding box: {params.output_bbox.as_tuple()}")

        result = aggregate_as_line_stacks(features, schema, params, PrintingProgress())
        path = write_result(result, args.output, crs)
    except StackProcessError as e:
        print(f"ERROR: {e}")
        return 1

    print(f"Wrote {len(result.features)} stacked lines to {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
