"""Free-hand stroke capture for the drawing tab, and PNG export of the drawing."""
import io
import base64
from typing import List, Optional, Tuple, Sequence

from PIL import Image, ImageDraw

Point = Tuple[float, float]
Stroke = Tuple[Point, ...]

# Native resolution of the drawing surface
SURFACE_WIDTH = 300
SURFACE_HEIGHT = 300

STROKE_WIDTH = 12
STROKE_COLOR = (0, 0, 0)
BACKGROUND = (255, 255, 255)

MAX_STROKES = 64
MAX_POINTS_PER_STROKE = 2000


def to_surface(x: float, y: float, display_width: float, display_height: float,
               width: int = SURFACE_WIDTH, height: int = SURFACE_HEIGHT) -> Point:
    """Map a pointer position in displayed (CSS) pixels to native surface pixels."""
    sx = x * width / display_width
    sy = y * height / display_height
    return (min(max(sx, 0.0), float(width)), min(max(sy, 0.0), float(height)))


class StrokeRecorder:
    """Ordered list of pen strokes. A stroke is frozen into a tuple on ``end()``."""

    def __init__(self, width: int = SURFACE_WIDTH, height: int = SURFACE_HEIGHT):
        self.width = width
        self.height = height
        self._strokes: List[Stroke] = []
        self._current: Optional[List[Point]] = None

    @classmethod
    def from_strokes(cls, strokes: Sequence[Sequence[Point]], **kwargs) -> "StrokeRecorder":
        recorder = cls(**kwargs)
        for stroke in strokes:
            if not stroke:
                continue
            recorder.begin(tuple(stroke[0]))
            for point in stroke[1:]:
                recorder.extend(tuple(point))
            recorder.end()
        return recorder

    def __len__(self) -> int:
        return len(self._strokes)

    @property
    def strokes(self) -> Tuple[Stroke, ...]:
        return tuple(self._strokes)

    @property
    def drawing(self) -> bool:
        return self._current is not None

    def begin(self, point: Point, continue_stroke: bool = False) -> bool:
        """Start a stroke. Returns False when the stroke limit is reached.

        With ``continue_stroke`` the new stroke starts at the last point of the
        previous one, so the line looks joined while staying a separate stroke.
        """
        if self._current is not None:
            self.end()
        if len(self._strokes) >= MAX_STROKES:
            return False
        if continue_stroke and self._strokes:
            self._current = [self._strokes[-1][-1], point]
        else:
            self._current = [point]
        return True

    def extend(self, point: Point) -> None:
        if self._current is None or len(self._current) >= MAX_POINTS_PER_STROKE:
            return
        self._current.append(point)

    def end(self) -> None:
        if self._current is None:
            return
        self._strokes.append(tuple(self._current))
        self._current = None

    def undo(self) -> None:
        if self._strokes:
            self._strokes.pop()

    def reset(self) -> None:
        self._strokes.clear()
        self._current = None

    def new_surface(self) -> Image.Image:
        return Image.new("RGB", (self.width, self.height), BACKGROUND)

    def render(self, surface: Image.Image) -> Image.Image:
        """Clear ``surface`` and redraw every stroke in order, round caps and joins."""
        draw = ImageDraw.Draw(surface)
        draw.rectangle([0, 0, surface.width, surface.height], fill=BACKGROUND)
        radius = STROKE_WIDTH / 2
        pending = [tuple(self._current)] if self._current else []
        for stroke in self._strokes + pending:
            if len(stroke) > 1:
                draw.line(list(stroke), fill=STROKE_COLOR, width=STROKE_WIDTH, joint="curve")
            for x, y in (stroke[0], stroke[-1]):
                draw.ellipse([x - radius, y - radius, x + radius, y + radius], fill=STROKE_COLOR)
        return surface

    def serialize(self) -> bytes:
        """PNG bytes of the drawing, or b"" when nothing has been drawn."""
        if not self._strokes:
            return b""
        buf = io.BytesIO()
        self.render(self.new_surface()).save(buf, format="PNG")
        return buf.getvalue()

    def to_data_uri(self) -> str:
        data = self.serialize()
        if not data:
            return ""
        return "data:image/png;base64," + base64.b64encode(data).decode("ascii")

    def to_json(self) -> list:
        return [[[x, y] for x, y in stroke] for stroke in self._strokes]
