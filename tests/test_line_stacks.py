"""
Tests for line_stacks module.

Run with: pytest tests/test_line_stacks.py -v

These tests cover:
1. The sign convention of the two sides and the invert flag
2. The running offset fold of a single stack
3. The complete transform from input features to offset lines
4. Error handling (fail fast, per-feature skips, script failures)
"""

import pytest
from shapely.geometry import LineString

import width_resolvers
from errors import GeometryError, ScriptError, ValidationError
from feature_hasher import GeometryHasher
from features import AggregatedFeature, AttributeDef, Feature, FeatureSchema
from line_stacks import (
    LEFT,
    RIGHT,
    ProgressListener,
    StackOffsetBuilder,
    StackState,
    aggregate_as_line_stacks,
    calculate_offset_in_map_units,
    create_stacks,
    is_inverted,
    offset_line,
    side_multiplier,
)
from map_utils import Bounds, MapUnitConverter
from stack_config import StackParameters

LINE = LineString([(0, 0), (10, 0)])
OTHER_LINE = LineString([(0, 50), (10, 50)])

# 1 map unit per pixel
VIEW = {"output_bbox": Bounds(min_x=0, max_x=100, min_y=0, max_y=100), "output_width": 100, "output_height": 100}


class FixedWidths:
    """Width resolver returning a preset width per feature id."""

    def __init__(self, widths):
        self.widths = widths

    def resolve_width(self, feature):
        return self.widths[feature.id]


class RecordingProgress(ProgressListener):
    def __init__(self):
        self.events = []

    def started(self):
        self.events.append("started")

    def complete(self):
        self.events.append("complete")


def unit_converter():
    return MapUnitConverter(VIEW["output_bbox"], VIEW["output_width"], VIEW["output_height"])


def member(id, geometry=LINE, count=1, **attributes):
    return AggregatedFeature(id=id, geometry=geometry, attributes=attributes, count=count)


def make_schema(*names, geometry_type="LineString"):
    return FeatureSchema(geometry_type=geometry_type, attributes=[AttributeDef(n) for n in names])


def make_params(**kwargs):
    values = dict(VIEW)
    values.update(kwargs)
    return StackParameters(**values)


# === Tests for the offset helpers ===

class TestSideMultiplier:
    """The four combinations of side and invert flag."""

    def test_left_not_inverted(self):
        assert side_multiplier(LEFT, False) == 1

    def test_left_inverted(self):
        assert side_multiplier(LEFT, True) == -1

    def test_right_not_inverted(self):
        assert side_multiplier(RIGHT, False) == -1

    def test_right_inverted(self):
        assert side_multiplier(RIGHT, True) == 1

    def test_unknown_side(self):
        with pytest.raises(ValueError):
            side_multiplier(0, False)


class TestCalculateOffset:
    """Tests for calculate_offset_in_map_units."""

    def test_both_sides_centers_band(self):
        """With both sides the line runs along the middle of its band."""
        assert calculate_offset_in_map_units(10, 8, True) == pytest.approx(14)

    def test_one_side_uses_base_offset(self):
        """On one side the line runs along the base offset."""
        assert calculate_offset_in_map_units(10, 8, False) == pytest.approx(10)


class TestIsInverted:
    """Tests for the invert-sides attribute interpretation."""

    def test_true_values(self):
        assert is_inverted(True) is True
        assert is_inverted("true") is True
        assert is_inverted(1) is True

    def test_false_values(self):
        assert is_inverted(None) is False
        assert is_inverted(False) is False
        assert is_inverted("false") is False
        assert is_inverted(0) is False


class TestOffsetLine:
    """Tests for offset_line."""

    def test_positive_offset_is_left(self):
        """Positive distances move the line to the left of its direction."""
        assert offset_line(LINE, 4).bounds == pytest.approx((0, 4, 10, 4))

    def test_negative_offset_is_right(self):
        assert offset_line(LINE, -4).bounds == pytest.approx((0, -4, 10, -4))

    def test_zero_offset_copies_line(self):
        assert offset_line(LINE, 0).equals(LINE)

    def test_empty_result_is_geometry_error(self, monkeypatch):
        """An empty offset curve is reported as a per-feature geometry error."""
        monkeypatch.setattr(LineString, "offset_curve", lambda self, distance: LineString())
        with pytest.raises(GeometryError):
            offset_line(LINE, 4)


# === Tests for the stack fold ===

class TestStackOffsetBuilder:
    """Tests for the running offset fold of one stack."""

    def make_builder(self, widths, **kwargs):
        return StackOffsetBuilder(FixedWidths(widths), unit_converter(), **kwargs)

    def test_initial_state_is_spacing(self):
        builder = self.make_builder({}, spacing_px=3)
        assert builder.initial_state() == StackState(3.0)

    def test_step_advances_by_width_and_spacing(self):
        """One step moves the running offset past the member's band."""
        builder = self.make_builder({"a": 8}, spacing_px=2, draw_on_both_sides=False)
        state, outputs = builder.step(builder.initial_state(), member("a"))
        assert state.running_offset_px == 12
        assert len(outputs) == 1
        assert outputs[0].geometry.bounds == pytest.approx((0, 2, 10, 2))

    def test_running_offsets_increase(self):
        """Offsets grow by at least width + spacing, so bands never overlap."""
        widths = {i: w for i, w in enumerate([8, 3, 15, 1, 40, 8])}
        spacing = 2
        builder = self.make_builder(widths, spacing_px=spacing, draw_on_both_sides=True)

        state = builder.initial_state()
        bands = []
        for i in range(len(widths)):
            start = state.running_offset_px
            state, outputs = builder.step(state, member(i))
            assert state.running_offset_px >= start + widths[i] + spacing
            bands.append((start, start + widths[i]))
            assert len(outputs) == 2

        for (_, end), (next_start, _) in zip(bands, bands[1:]):
            assert next_start >= end + spacing

    def test_both_sides_geometry(self):
        """Two members drawn on both sides of the line."""
        builder = self.make_builder({"a": 8, "b": 10}, spacing_px=0, draw_on_both_sides=True)
        outputs = builder.build_stack([member("a"), member("b")])

        ys = [o.geometry.bounds[1] for o in outputs]
        assert ys == pytest.approx([4, -4, 13, -13])

    def test_both_sides_with_spacing(self):
        builder = self.make_builder({"a": 8, "b": 10}, spacing_px=2, draw_on_both_sides=True)
        outputs = builder.build_stack([member("a"), member("b")])

        ys = [o.geometry.bounds[1] for o in outputs]
        assert ys == pytest.approx([6, -6, 17, -17])

    def test_inverted_member_on_one_side(self):
        """The invert flag moves a one-sided member to the right."""
        builder = self.make_builder(
            {"a": 8}, spacing_px=3, draw_on_both_sides=False, invert_sides_attribute="flip"
        )
        outputs = builder.build_stack([member("a", flip=True)])
        assert outputs[0].geometry.bounds == pytest.approx((0, -3, 10, -3))

    def test_output_attributes(self):
        """Count and width are attached to every output feature."""
        builder = self.make_builder({"a": 12})
        outputs = builder.build_stack([member("a", count=5, line="S1")])
        for output in outputs:
            assert output.attributes == {"line": "S1", "agg_count": 5, "line_width": 12}
        assert len({o.id for o in outputs}) == 2

    def test_geometry_error_skips_member(self, monkeypatch):
        """A failing offset skips the member and keeps the running offset."""
        import line_stacks

        original = line_stacks.offset_line

        def failing_offset(line, distance):
            if line is BROKEN:
                raise GeometryError("collapsed")
            return original(line, distance)

        BROKEN = LineString([(0, 0), (10, 0)])
        monkeypatch.setattr(line_stacks, "offset_line", failing_offset)

        builder = self.make_builder({"a": 8, "b": 8, "c": 8}, draw_on_both_sides=False)
        outputs = builder.build_stack([member("a"), member("b", geometry=BROKEN), member("c")])

        assert [o.geometry.bounds[1] for o in outputs] == pytest.approx([0, 8])


class TestCreateStacks:
    """Tests for create_stacks."""

    def test_groups_by_geometry(self):
        """Equal geometries share a stack; arrival order is kept."""
        features = [member("a"), member("b", geometry=OTHER_LINE), member("c")]
        stacks = create_stacks(features, GeometryHasher())
        assert [[f.id for f in s] for s in stacks.values()] == [["a", "c"], ["b"]]

    def test_attributes_do_not_split_stacks(self):
        features = [member("a", color="red"), member("b", color="blue")]
        assert len(create_stacks(features)) == 1


# === End to end tests ===

class TestAggregateAsLineStacks:
    """Tests for the complete transform."""

    def test_three_identical_lines(self):
        """Three duplicates become one line of width 8 on the original path."""
        features = [Feature(id=i, geometry=LINE, attributes={"name": "x"}) for i in range(3)]
        params = make_params(min_line_width=8, max_line_width=80, draw_on_both_sides=False)

        result = aggregate_as_line_stacks(features, make_schema("name"), params)

        assert len(result.features) == 1
        output = result.features[0]
        assert output.attributes["agg_count"] == 3
        assert output.attributes["line_width"] == 8
        assert output.geometry.equals(LINE)
        assert result.schema.attribute_names == ["agg_count", "line_width"]

    def test_distinct_geometries_never_share_a_stack(self):
        """Equal attributes on different lines give separate stacks."""
        features = [
            Feature(id=1, geometry=LINE, attributes={"line": "S1"}),
            Feature(id=2, geometry=OTHER_LINE, attributes={"line": "S1"}),
        ]
        params = make_params(attributes="line", draw_on_both_sides=False)

        result = aggregate_as_line_stacks(features, make_schema("line"), params)

        assert len(result.features) == 2
        assert result.features[0].geometry.equals(LINE)
        assert result.features[1].geometry.equals(OTHER_LINE)
        assert all(f.attributes["agg_count"] == 1 for f in result.features)

    def test_stack_order_and_offsets(self):
        """Members are ordered by the order attribute and placed outward."""
        features = [
            Feature(id=1, geometry=LINE, attributes={"line": "S2", "order": 2}),
            Feature(id=2, geometry=LINE, attributes={"line": "S1", "order": 1}),
            Feature(id=3, geometry=LINE, attributes={"line": "S1", "order": 1}),
        ]
        params = make_params(
            attributes="line",
            order_attribute="order",
            min_line_width=4,
            draw_on_both_sides=False,
            spacing_between_stack_entries=1,
        )

        result = aggregate_as_line_stacks(features, make_schema("line", "order"), params)

        assert [f.attributes["line"] for f in result.features] == ["S1", "S2"]
        assert [f.attributes["agg_count"] for f in result.features] == [2, 1]
        # S1 at spacing 1, S2 at 1 + 4 + 1
        assert [f.geometry.bounds[1] for f in result.features] == pytest.approx([1, 6])
        assert result.schema.attribute_names == ["line", "order", "agg_count", "line_width"]

    def test_invert_sides_attribute(self):
        """A true invert flag draws the one-sided member on the right."""
        features = [Feature(id=1, geometry=LINE, attributes={"flip": True})]
        params = make_params(
            invert_sides_attribute="flip",
            draw_on_both_sides=False,
            spacing_between_stack_entries=5,
        )
        result = aggregate_as_line_stacks(features, make_schema("flip"), params)
        assert result.features[0].geometry.bounds[1] == pytest.approx(-5)

    def test_counts_cover_all_inputs(self):
        features = [
            Feature(id=i, geometry=LINE if i % 2 else OTHER_LINE, attributes={"line": f"S{i % 3}"})
            for i in range(12)
        ]
        params = make_params(attributes="line", draw_on_both_sides=False)
        result = aggregate_as_line_stacks(features, make_schema("line"), params)
        assert sum(f.attributes["agg_count"] for f in result.features) == 12

    def test_progress_notifications(self):
        monitor = RecordingProgress()
        features = [Feature(id=1, geometry=LINE, attributes={})]
        aggregate_as_line_stacks(features, make_schema(), make_params(), monitor)
        assert monitor.events == ["started", "complete"]

    def test_invalid_input_lines_are_skipped(self):
        """Empty lines are dropped with a warning instead of failing."""
        features = [
            Feature(id=1, geometry=LineString(), attributes={}),
            Feature(id=2, geometry=None, attributes={}),
            Feature(id=3, geometry=LINE, attributes={}),
        ]
        params = make_params(draw_on_both_sides=False)
        result = aggregate_as_line_stacks(features, make_schema(), params)
        assert len(result.features) == 1
        assert result.features[0].attributes["agg_count"] == 1

    def test_debug_sql_file(self, tmp_path):
        """The SQL debug dump holds one insert per output feature."""
        sql_file = tmp_path / "debug.sql"
        features = [Feature(id=1, geometry=LINE, attributes={})]
        params = make_params(debug_sql_file=str(sql_file))

        result = aggregate_as_line_stacks(features, make_schema(), params)

        lines = sql_file.read_text().splitlines()
        assert len(lines) == len(result.features) == 2
        assert lines[0].startswith("INSERT INTO stacked_lines (geom) VALUES (ST_GeomFromText('LINESTRING")


class TestAggregateAsLineStacksErrors:
    """Request-level failures."""

    def test_min_line_width_zero(self):
        """minLineWidth=0 fails before any feature is processed."""
        monitor = RecordingProgress()
        features = [Feature(id=1, geometry=LINE, attributes={})]
        with pytest.raises(ValidationError, match="minLineWidth"):
            aggregate_as_line_stacks(features, make_schema(), make_params(min_line_width=0), monitor)
        assert monitor.events == []

    @pytest.mark.parametrize("kwargs", [
        {"max_line_width": 0},
        {"spacing_between_stack_entries": -1},
        {"output_width": 0},
        {"output_bbox": None},
    ])
    def test_invalid_parameters(self, kwargs):
        features = [Feature(id=1, geometry=LINE, attributes={})]
        with pytest.raises(ValidationError):
            aggregate_as_line_stacks(features, make_schema(), make_params(**kwargs))

    def test_non_line_schema(self):
        """Collections of other geometry types are rejected."""
        with pytest.raises(ValidationError, match="LineString"):
            aggregate_as_line_stacks([], make_schema(geometry_type="Polygon"), make_params())

    def test_unknown_attribute(self):
        with pytest.raises(ValidationError, match="missing"):
            aggregate_as_line_stacks([], make_schema("line"), make_params(attributes="missing"))

    def test_count_attribute_collision(self):
        """An input attribute named like an output attribute is rejected."""
        with pytest.raises(ValidationError, match="agg_count"):
            aggregate_as_line_stacks([], make_schema("agg_count"), make_params(attributes="agg_count"))

    def test_missing_attribute_on_feature(self):
        features = [
            Feature(id=1, geometry=LINE, attributes={"line": "S1"}),
            Feature(id=2, geometry=LINE, attributes={}),
        ]
        with pytest.raises(ValidationError, match="line"):
            aggregate_as_line_stacks(features, make_schema("line"), make_params(attributes="line"))

    def test_non_numeric_order_value(self):
        features = [
            Feature(id=1, geometry=LINE, attributes={"order": 1}),
            Feature(id=2, geometry=LINE, attributes={"order": "top"}),
        ]
        with pytest.raises(ValidationError, match="order"):
            aggregate_as_line_stacks(features, make_schema("order"), make_params(order_attribute="order"))

    def test_script_failure_aborts_and_releases_once(self, monkeypatch):
        """A script error on the 2nd of 5 members aborts the whole request."""
        releases = []
        original_release = width_resolvers.JavaScriptRuntime.release

        def counting_release(self):
            releases.append(self)
            original_release(self)

        monkeypatch.setattr(width_resolvers.JavaScriptRuntime, "release", counting_release)

        # the member with order n is repeated n times, so its count is n
        features = []
        for n in range(1, 6):
            features.extend(
                Feature(id=f"{n}.{i}", geometry=LINE, attributes={"order": n}) for i in range(n)
            )
        script = """
        function getFeatureWidth(featureLength, aggCount) {
            if (aggCount === 2) { throw new Error('width failed'); }
            return 10;
        }
        """
        params = make_params(order_attribute="order", render_script=script)

        with pytest.raises(ScriptError, match="width failed"):
            aggregate_as_line_stacks(features, make_schema("order"), params)

        assert len(releases) == 1
        assert releases[0].is_released

    def test_script_widths(self):
        """The scripted strategy replaces the clamp."""
        script = "function getFeatureWidth(featureLength, aggCount) { return featureLength + aggCount; }"
        features = [Feature(id=i, geometry=LINE, attributes={}) for i in range(2)]
        params = make_params(render_script=script, draw_on_both_sides=False)

        result = aggregate_as_line_stacks(features, make_schema(), params)

        assert result.features[0].attributes["line_width"] == 12

    def test_missing_attribute_releases_runtime(self, monkeypatch):
        """Input errors after the script was created still release it."""
        releases = []
        original_release = width_resolvers.JavaScriptRuntime.release

        def counting_release(self):
            releases.append(self)
            original_release(self)

        monkeypatch.setattr(width_resolvers.JavaScriptRuntime, "release", counting_release)

        features = [Feature(id=1, geometry=LINE, attributes={})]
        params = make_params(
            attributes="line",
            render_script="function getFeatureWidth(l, c) { return 1; }",
        )
        with pytest.raises(ValidationError):
            aggregate_as_line_stacks(features, make_schema("line"), params)
        assert len(releases) == 1
