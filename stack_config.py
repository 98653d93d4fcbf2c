"""
Request parameters of the line stacking transform.

Parameters can be given in Python (snake_case), or as a JSON document /
HTTP request body using the camelCase names of the original process:

    {
        "attributes": "line_id,color",
        "orderAttribute": "sort_order",
        "minLineWidth": 8,
        "maxLineWidth": 80,
        "drawOnBothSides": true,
        "spacingBetweenStackEntries": 2,
        "outputBBOX": "2600000,1200000,2610000,1210000,EPSG:2056",
        "outputWidth": 1000,
        "outputHeight": 1000
    }
"""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from errors import ValidationError
from map_utils import Bounds

# camelCase request names -> dataclass fields
PARAMETER_NAMES = {
    "attributes": "attributes",
    "orderAttribute": "order_attribute",
    "invertSidesAttribute": "invert_sides_attribute",
    "minLineWidth": "min_line_width",
    "maxLineWidth": "max_line_width",
    "drawOnBothSides": "draw_on_both_sides",
    "spacingBetweenStackEntries": "spacing_between_stack_entries",
    "renderScript": "render_script",
    "scriptCustomVariable1": "script_custom_variable1",
    "scriptCustomVariable2": "script_custom_variable2",
    "outputBBOX": "output_bbox",
    "outputBBox": "output_bbox",
    "outputWidth": "output_width",
    "outputHeight": "output_height",
    "enableDurationMeasurement": "enable_duration_measurement",
    "debugSqlFile": "debug_sql_file",
}

INT_FIELDS = (
    "min_line_width",
    "max_line_width",
    "spacing_between_stack_entries",
    "output_width",
    "output_height",
)
BOOL_FIELDS = ("draw_on_both_sides", "enable_duration_measurement")


def split_attribute_names(value) -> List[str]:
    """Split a comma separated attribute list, dropping blanks."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(",") if part.strip()]


def parse_bool(value, name: str = "") -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off", ""):
            return False
    raise ValidationError(f"{name or 'Value'} has to be a boolean, but is {value!r}")


def parse_int(value, name: str = "") -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name or 'Value'} has to be an integer, but is {value!r}")
    try:
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError(value)
            return int(value)
        return int(str(value).strip())
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name or 'Value'} has to be an integer, but is {value!r}") from e


@dataclass
class StackParameters:
    """Parameters for one invocation of the line stacking transform."""
    attributes: List[str] = field(default_factory=list)
    order_attribute: str = ""
    invert_sides_attribute: str = ""
    min_line_width: int = 8
    max_line_width: int = 80
    draw_on_both_sides: bool = True
    spacing_between_stack_entries: int = 0
    render_script: str = ""
    script_custom_variable1: str = ""
    script_custom_variable2: str = ""
    output_bbox: Optional[Bounds] = None
    output_width: Optional[int] = None
    output_height: Optional[int] = None
    enable_duration_measurement: bool = False
    debug_sql_file: str = ""

    def __post_init__(self):
        self.attributes = split_attribute_names(self.attributes)
        self.order_attribute = (self.order_attribute or "").strip()
        self.invert_sides_attribute = (self.invert_sides_attribute or "").strip()
        if self.output_bbox is not None and not isinstance(self.output_bbox, Bounds):
            self.output_bbox = Bounds.parse(self.output_bbox)

    @property
    def uses_script(self) -> bool:
        """True if a render script replaces the min/max width clamp."""
        return bool(self.render_script and self.render_script.strip())

    @property
    def aggregation_attributes(self) -> List[str]:
        """The attributes list plus the order and invert-sides attributes."""
        names = list(self.attributes)
        for extra in (self.order_attribute, self.invert_sides_attribute):
            if extra and extra not in names:
                names.append(extra)
        return names

    def validate(self):
        """Check parameter constraints before any feature is processed."""
        if self.min_line_width < 1:
            raise ValidationError(
                f"minLineWidth has to be a positive value bigger than 0, but currently is {self.min_line_width}"
            )
        if self.max_line_width < 1:
            raise ValidationError(
                f"maxLineWidth has to be a positive value bigger than 0, but currently is {self.max_line_width}"
            )
        if self.spacing_between_stack_entries < 0:
            raise ValidationError(
                "spacingBetweenStackEntries has to be a positive value or 0, "
                f"but currently is {self.spacing_between_stack_entries}"
            )
        if self.output_bbox is None:
            raise ValidationError("outputBBOX is required")
        if self.output_bbox.is_degenerate:
            raise ValidationError(f"outputBBOX has no extent: {self.output_bbox.as_tuple()}")
        for name in ("output_width", "output_height"):
            value = getattr(self, name)
            if value is None or value < 1:
                raise ValidationError(f"{_request_name(name)} has to be a positive value, but currently is {value}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StackParameters':
        """Create parameters from request style or snake_case keys.

        Unknown keys raise ValidationError so that typos do not go unnoticed.
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Parameters have to be an object, but are {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = PARAMETER_NAMES.get(key, key)
            if name not in known:
                raise ValidationError(f"Unknown parameter '{key}'")
            if value is None:
                continue
            if name in INT_FIELDS:
                value = parse_int(value, key)
            elif name in BOOL_FIELDS:
                value = parse_bool(value, key)
            elif name == "output_bbox":
                value = Bounds.parse(value)
            kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Request style representation (camelCase keys)."""
        result = {}
        for key, name in PARAMETER_NAMES.items():
            if key == "outputBBox":
                continue
            value = getattr(self, name)
            if name == "attributes":
                value = ",".join(value)
            elif name == "output_bbox" and value is not None:
                value = list(value.as_tuple())
            result[key] = value
        return result


def _request_name(field_name: str) -> str:
    for key, name in PARAMETER_NAMES.items():
        if name == field_name:
            return key
    return field_name


def load_parameters(path) -> StackParameters:
    """Load parameters from a JSON file."""
    path = Path(path)
    if not path.exists():
        raise ValidationError(f"Parameter file not found: {path}")
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Parameter file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"Parameter file {path} has to contain a JSON object")
    return StackParameters.from_dict(data)
