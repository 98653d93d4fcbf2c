"""
Line width strategies.

The width of a stack member is either the merge count clamped into
[minLineWidth, maxLineWidth], or the result of a JavaScript function
supplied with the request. The script has to define

    function getFeatureWidth(featureLength, aggCount) {
        return Math.min(aggCount * 2, 40);
    }

where featureLength is the length of the line in map units and aggCount the
number of merged features. The globals customVariable1 and customVariable2
hold the request's scriptCustomVariable1/2 values; they are registered
after the script has been evaluated, so they are only available inside
functions.
"""

import json
import logging
import math
from contextlib import contextmanager
from typing import Iterator

from py_mini_racer import JSEvalException, MiniRacer

from errors import ScriptError, ValidationError

logger = logging.getLogger(__name__)

WIDTH_FUNCTION_NAME = "getFeatureWidth"
CUSTOM_VARIABLE_NAMES = ("customVariable1", "customVariable2")


class ClampWidthResolver:
    """Width = merge count bounded by the min and max line width (pixels)."""

    def __init__(self, min_line_width: int = 8, max_line_width: int = 80):
        if min_line_width < 1:
            raise ValidationError(
                f"minLineWidth has to be a positive value bigger than 0, but currently is {min_line_width}"
            )
        if max_line_width < 1:
            raise ValidationError(
                f"maxLineWidth has to be a positive value bigger than 0, but currently is {max_line_width}"
            )
        self.min_line_width = min_line_width
        self.max_line_width = max_line_width

    def resolve_width(self, feature) -> int:
        return min(max(self.min_line_width, feature.count), self.max_line_width)


class JavaScriptRuntime:
    """A V8 context running one render script.

    The runtime is created per request and must be released with
    `release()` once the request is done, also when it failed.
    """

    def __init__(self, source: str, function_name: str = WIDTH_FUNCTION_NAME):
        self.function_name = function_name
        self._context = MiniRacer()
        try:
            self._context.eval(source)
            is_function = self._context.eval(f"typeof {function_name} === 'function'")
        except JSEvalException as e:
            self.release()
            raise ScriptError(f"Could not evaluate the render script: {e}") from e
        if not is_function:
            self.release()
            raise ScriptError(f"The render script does not define a function named {function_name}")

    @property
    def is_released(self) -> bool:
        return self._context is None

    def register_global(self, name: str, value):
        """Expose a value to the script as a global variable."""
        if not name.isidentifier():
            raise ScriptError(f"'{name}' is not a valid script variable name")
        self._require_context().eval(f"var {name} = {json.dumps(value)};")

    def resolve_width(self, feature_length: float, agg_count: int):
        """Call the script's width function.

        The call is evaluated as an expression, so any primitive result (also
        undefined) comes back as a Python value for the caller to check.
        """
        expression = f"{self.function_name}({json.dumps(float(feature_length))}, {int(agg_count)})"
        try:
            return self._require_context().eval(expression)
        except JSEvalException as e:
            raise ScriptError(f"Failed to call {self.function_name} of the render script: {e}") from e

    def release(self):
        """Free the V8 context. Calling it again does nothing."""
        if self._context is None:
            return
        context, self._context = self._context, None
        context.close()

    def _require_context(self) -> MiniRacer:
        if self._context is None:
            raise ScriptError("The render script runtime has already been released")
        return self._context


class ScriptedWidthResolver:
    """Width from the render script's function of line length and merge count."""

    def __init__(self, runtime: JavaScriptRuntime):
        self.runtime = runtime

    def resolve_width(self, feature) -> int:
        length = feature.geometry.length if feature.geometry is not None else 0.0
        result = self.runtime.resolve_width(float(length), int(feature.count))
        if isinstance(result, bool) or not isinstance(result, (int, float)):
            raise ScriptError(
                f"{self.runtime.function_name} has to return a number, "
                f"but returned {result!r} for feature '{feature.id}'"
            )
        if not math.isfinite(result) or result < 0:
            raise ScriptError(
                f"{self.runtime.function_name} returned the invalid width {result!r} for feature '{feature.id}'"
            )
        return int(result)


def create_script_runtime(parameters) -> JavaScriptRuntime:
    """Create the runtime for a request's render script and register its globals."""
    logger.info("Creating render script runtime")
    runtime = JavaScriptRuntime(parameters.render_script)
    try:
        runtime.register_global(CUSTOM_VARIABLE_NAMES[0], parameters.script_custom_variable1)
        runtime.register_global(CUSTOM_VARIABLE_NAMES[1], parameters.script_custom_variable2)
    except Exception:
        runtime.release()
        raise
    return runtime


@contextmanager
def open_width_resolver(parameters) -> Iterator:
    """Select the width strategy for one request.

    A non-empty render script selects the scripted resolver; its runtime is
    released when the block exits, whether it completed or raised.
    """
    if not parameters.uses_script:
        yield ClampWidthResolver(parameters.min_line_width, parameters.max_line_width)
        return

    runtime = create_script_runtime(parameters)
    try:
        yield ScriptedWidthResolver(runtime)
    finally:
        runtime.release()
