"""
Aggregate line features as stacks of parallel lines.

Features sharing the same geometry form a stack. Each member of a stack
is drawn as an offset copy of the shared line, placed next to the previous
member so that the stacked lines render as parallel, non-overlapping bands.

Usage:
    from line_stacks import aggregate_as_line_stacks
    from stack_config import StackParameters

    params = StackParameters(
        attributes="line_id",
        output_bbox=(0, 0, 1000, 1000),
        output_width=1000,
        output_height=1000,
    )
    result = aggregate_as_line_stacks(features, schema, params)
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from shapely.geometry import LineString
from shapely.ops import linemerge

from debug_io import dump_features_to_sql_file
from errors import GeometryError
from feature_aggregator import FeatureAggregator
from feature_hasher import GeometryHasher
from feature_order import FeatureOrderComparator
from features import (
    AGG_COUNT_ATTRIBUTE_NAME,
    WIDTH_ATTRIBUTE_NAME,
    AggregatedFeature,
    Feature,
    FeatureSchema,
    OutputFeature,
    assert_line_schema,
    build_aggregated_schema,
    build_output_schema,
    validate_line_geometry,
)
from map_utils import MapUnitConverter
from stack_config import StackParameters
from width_resolvers import open_width_resolver

logger = logging.getLogger(__name__)

LEFT = 1
RIGHT = -1

DEBUG_SQL_TABLE = "stacked_lines"


def side_multiplier(side: int, inverted: bool) -> int:
    """Sign of the offset distance for a side of the line.

    Args:
        side: LEFT or RIGHT
        inverted: True if the feature asks for its sides to be swapped

    Returns:
        1 for the left side of the line direction, -1 for the right side
    """
    if side not in (LEFT, RIGHT):
        raise ValueError(f"Unknown side {side}")
    return -side if inverted else side


def calculate_offset_in_map_units(
    base_offset: float,
    feature_width: float,
    draw_on_both_sides: bool
) -> float:
    """Unsigned distance between the original line and a member's line.

    With both sides drawn, the member's band starts at the base offset on
    each side and the line runs along the band's middle. Drawn on one
    side, the line runs along the base offset itself.
    """
    if draw_on_both_sides:
        return base_offset + feature_width / 2
    return base_offset


def is_inverted(value) -> bool:
    """Interpret an invert-sides attribute value. None and False keep the sides."""
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "t")
    return bool(value)


def offset_line(line: LineString, distance: float):
    """Parallel copy of a line at a signed perpendicular distance.

    Positive distances offset to the left of the line direction.

    Raises:
        GeometryError: If the offset line is empty or not a line
    """
    if distance == 0:
        return LineString(line.coords)
    try:
        result = line.offset_curve(distance)
    except Exception as e:
        raise GeometryError(f"Could not offset line by {distance}: {e}") from e

    if result.geom_type == "MultiLineString":
        result = linemerge(result)
    if result.is_empty or result.geom_type not in ("LineString", "MultiLineString"):
        raise GeometryError(f"Offsetting the line by {distance} produced an empty or invalid geometry")
    if result.geom_type == "LineString" and len(result.coords) < 2:
        raise GeometryError("Invalid number of points in offset LineString (must be >= 2)")
    return result


@dataclass(frozen=True)
class StackState:
    """Running offset of a stack, in pixels."""
    running_offset_px: float

    def advance(self, width_px: float, spacing_px: float) -> 'StackState':
        return StackState(self.running_offset_px + width_px + spacing_px)


@dataclass
class StackResult:
    """Output of one invocation."""
    schema: FeatureSchema
    features: List[OutputFeature] = field(default_factory=list)


class ProgressListener:
    """Advisory start/complete notifications. The default does nothing."""

    def started(self):
        pass

    def complete(self):
        pass


class StackOffsetBuilder:
    """Lays out the members of a stack side by side.

    Processing a stack is a fold over its ordered members: `step` takes the
    running state and one member and returns the next state plus the
    member's output features.
    """

    def __init__(
        self,
        width_resolver,
        converter: MapUnitConverter,
        spacing_px: int = 0,
        draw_on_both_sides: bool = True,
        invert_sides_attribute: str = "",
        count_attribute: str = AGG_COUNT_ATTRIBUTE_NAME,
        width_attribute: str = WIDTH_ATTRIBUTE_NAME
    ):
        self.width_resolver = width_resolver
        self.converter = converter
        self.spacing_px = spacing_px
        self.draw_on_both_sides = draw_on_both_sides
        self.invert_sides_attribute = invert_sides_attribute
        self.count_attribute = count_attribute
        self.width_attribute = width_attribute
        self._next_id = 0

    def initial_state(self) -> StackState:
        return StackState(float(self.spacing_px))

    def sides(self) -> Tuple[int, ...]:
        return (LEFT, RIGHT) if self.draw_on_both_sides else (LEFT,)

    def step(self, state: StackState, member: AggregatedFeature) -> Tuple[StackState, List[OutputFeature]]:
        """Place one stack member.

        A member whose offset geometry can not be built is logged and
        skipped; the running offset is then left unchanged.
        """
        width_px = self.width_resolver.resolve_width(member)

        base_offset = self.converter.to_map_units(state.running_offset_px)
        width = self.converter.to_map_units(width_px)
        distance = calculate_offset_in_map_units(base_offset, width, self.draw_on_both_sides)

        inverted = False
        if self.invert_sides_attribute:
            inverted = is_inverted(member.attributes.get(self.invert_sides_attribute))

        try:
            line = validate_line_geometry(member.geometry)
            geometries = [
                offset_line(line, side_multiplier(side, inverted) * distance)
                for side in self.sides()
            ]
        except GeometryError as e:
            logger.warning("Ignoring possible illegal feature '%s': %s", member.id, e)
            return state, []

        outputs = []
        for geometry in geometries:
            attributes = dict(member.attributes)
            attributes[self.count_attribute] = member.count
            attributes[self.width_attribute] = width_px
            outputs.append(OutputFeature(id=self._new_id(), geometry=geometry, attributes=attributes))

        return state.advance(width_px, self.spacing_px), outputs

    def build_stack(self, members: Iterable[AggregatedFeature]) -> List[OutputFeature]:
        """Fold over the ordered members of one stack."""
        state = self.initial_state()
        outputs = []
        for member in members:
            state, produced = self.step(state, member)
            outputs.extend(produced)
        return outputs

    def _new_id(self) -> str:
        self._next_id += 1
        return f"{DEBUG_SQL_TABLE}.{self._next_id}"


def create_stacks(
    features: Iterable[AggregatedFeature],
    hasher: Optional[GeometryHasher] = None
) -> Dict[int, List[AggregatedFeature]]:
    """Group features with identical geometries, keeping arrival order."""
    hasher = hasher or GeometryHasher()
    stacks: Dict[int, List[AggregatedFeature]] = {}
    for feature in features:
        stacks.setdefault(hasher.hash(feature), []).append(feature)

    if hasher.measuring_enabled:
        logger.info(
            "Spent %.3f seconds on creating feature hashes to order line stacks",
            hasher.time_spent
        )
    return stacks


def _usable_features(features: Iterable[Feature]) -> Iterable[Feature]:
    for feature in features:
        try:
            validate_line_geometry(feature.geometry)
        except GeometryError as e:
            logger.warning("Skipping input feature '%s': %s", feature.id, e)
            continue
        yield feature


def aggregate_as_line_stacks(
    features: Iterable[Feature],
    schema: FeatureSchema,
    parameters: StackParameters,
    monitor: Optional[ProgressListener] = None
) -> StackResult:
    """Run the line stacking transform.

    Args:
        features: Input line features
        schema: Schema of the input collection
        parameters: Request parameters
        monitor: Optional listener notified when processing starts and completes

    Returns:
        StackResult with the output schema and the offset line features

    Raises:
        StackProcessError: On invalid parameters or input, or a failing render script
    """
    monitor = monitor or ProgressListener()
    measuring = parameters.enable_duration_measurement

    assert_line_schema(schema)
    parameters.validate()
    key_attributes = parameters.aggregation_attributes
    aggregated_schema = build_aggregated_schema(schema, key_attributes)
    output_schema = build_output_schema(aggregated_schema)
    converter = MapUnitConverter(parameters.output_bbox, parameters.output_width, parameters.output_height)

    with open_width_resolver(parameters) as width_resolver:
        monitor.started()

        aggregator = FeatureAggregator(
            key_attributes,
            geometry_hasher=GeometryHasher(),
            measuring_enabled=measuring
        )
        aggregated = aggregator.aggregate(_usable_features(features))

        stacks = create_stacks(aggregated, GeometryHasher(measuring_enabled=measuring))

        comparator = FeatureOrderComparator(parameters.order_attribute)
        builder = StackOffsetBuilder(
            width_resolver,
            converter,
            spacing_px=parameters.spacing_between_stack_entries,
            draw_on_both_sides=parameters.draw_on_both_sides,
            invert_sides_attribute=parameters.invert_sides_attribute
        )
        output = []
        for members in stacks.values():
            output.extend(builder.build_stack(comparator.sort(members)))

        monitor.complete()

    if parameters.debug_sql_file:
        logger.warning(
            "Writing debugSqlFile to %s. This should only be activated for debugging purposes.",
            parameters.debug_sql_file
        )
        dump_features_to_sql_file(output, parameters.debug_sql_file, DEBUG_SQL_TABLE)

    logger.info("Returning a collection with %d features", len(output))
    return StackResult(schema=output_schema, features=output)
