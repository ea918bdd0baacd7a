"""Piecewise linear functions."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, TextIO

_EPS = 1e-6


@dataclass(frozen=True)
class Interval:
    """A closed interval [start, end]."""

    start: float
    end: float

    def contains(self, value: float) -> bool:
        return self.start <= value <= self.end

    def clip(self, value: float) -> float:
        if value < self.start:
            return self.start
        if value > self.end:
            return self.end
        return value

    def length(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class Point:
    """A 2D point or vector."""

    x: float = 0.0
    y: float = 0.0

    def __sub__(self, other: Point) -> Point:
        return Point(self.x - other.x, self.y - other.y)

    def __add__(self, other: Point) -> Point:
        return Point(self.x + other.x, self.y + other.y)

    def __mul__(self, factor: float) -> Point:
        return Point(self.x * factor, self.y * factor)

    def __truediv__(self, factor: float) -> Point:
        return Point(self.x / factor, self.y / factor)

    def dot(self, other: Point) -> float:
        return self.x * other.x + self.y * other.y

    def len2(self) -> float:
        return self.x * self.x + self.y * self.y

    def length(self) -> float:
        return self.len2() ** 0.5


class PerpType(Enum):
    """What kind of closest point :meth:`Pwl.invert` found."""

    NOT_FOUND = "not_found"
    START = "start"
    END = "end"
    VERTEX = "vertex"
    PERPENDICULAR = "perpendicular"


def _as_point(p: Point | tuple[float, float]) -> Point:
    if isinstance(p, Point):
        return p
    x, y = p
    return Point(float(x), float(y))


class Pwl:
    """A piecewise linear function defined by control points of increasing x."""

    def __init__(self, points: Iterable[Point | tuple[float, float]] | None = None):
        self._points: list[Point] = [_as_point(p) for p in points] if points else []

    @property
    def points(self) -> tuple[Point, ...]:
        return tuple(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Pwl):
            return NotImplemented
        return self._points == other._points

    def __repr__(self) -> str:
        pts = ", ".join(f"({p.x:g}, {p.y:g})" for p in self._points)
        return f"Pwl([{pts}])"

    def read(self, params: Iterable[float]) -> None:
        """Append points from a flat sequence x0, y0, x1, y1, ..."""
        values = [float(v) for v in params]
        if len(values) % 2:
            raise ValueError("Pwl: odd number of values")
        for i, (x, y) in enumerate(zip(values[::2], values[1::2])):
            if i and not x > self._points[-1].x:
                raise ValueError("Pwl: x values must be strictly increasing")
            self._points.append(Point(x, y))
        if len(self._points) < 2:
            raise ValueError("Pwl: at least two points are required")

    def append(self, x: float, y: float, eps: float = _EPS) -> None:
        if not self._points or self._points[-1].x + eps < x:
            self._points.append(Point(x, y))

    def prepend(self, x: float, y: float, eps: float = _EPS) -> None:
        if not self._points or self._points[0].x - eps > x:
            self._points.insert(0, Point(x, y))

    def domain(self) -> Interval:
        return Interval(self._points[0].x, self._points[-1].x)

    def range(self) -> Interval:
        ys = [p.y for p in self._points]
        return Interval(min(ys), max(ys))

    def empty(self) -> bool:
        return not self._points

    def eval(self, x: float, span: int = -1) -> float:
        """Evaluate at x, optionally with a starting guess for the span."""
        return self.eval_span(x, span)[0]

    def eval_span(self, x: float, span: int = -1) -> tuple[float, int]:
        """Evaluate at x and return the value with the span it lies in.

        A span of -1 means no initial guess.
        """
        start = span if span != -1 else len(self._points) // 2 - 1
        span = self._find_span(x, start)
        p0, p1 = self._points[span], self._points[span + 1]
        return p0.y + (x - p0.x) * (p1.y - p0.y) / (p1.x - p0.x), span

    def _find_span(self, x: float, span: int) -> int:
        last_span = len(self._points) - 2
        span = max(0, min(last_span, span))
        while span < last_span and x >= self._points[span + 1].x:
            span += 1
        while span and x < self._points[span].x:
            span -= 1
        return span

    def invert(
        self, xy: Point, span: int = -1, eps: float = _EPS
    ) -> tuple[PerpType, Point | None, int]:
        """Find the closest perpendicular to xy, searching from span + 1.

        Returns the kind of point found, the point itself (None when nothing
        was found) and the span reached, which can be passed back in to keep
        searching.
        """
        if span < -1:
            raise ValueError("Pwl.invert: span must be at least -1")
        points = self._points
        prev_off_end = False
        span += 1
        while span < len(points) - 1:
            span_vec = points[span + 1] - points[span]
            t = (xy - points[span]).dot(span_vec) / span_vec.len2()
            if t < -eps:
                if span == 0:
                    return PerpType.START, points[span], span
                if prev_off_end:
                    return PerpType.VERTEX, points[span], span
            elif t > 1 + eps:
                if span == len(points) - 2:
                    return PerpType.END, points[span + 1], span
                prev_off_end = True
            else:
                return PerpType.PERPENDICULAR, points[span] + span_vec * t, span
            span += 1
        return PerpType.NOT_FOUND, None, span

    def compose(self, other: Pwl, eps: float = _EPS) -> Pwl:
        """Compose two functions, applying this one first and other after."""
        pts, opts = self._points, other._points
        this_x, this_y = pts[0].x, pts[0].y
        this_span = 0
        other_span = other._find_span(this_y, 0)
        result = Pwl([Point(this_x, other.eval(this_y, other_span))])
        while this_span != len(pts) - 1:
            dx = pts[this_span + 1].x - pts[this_span].x
            dy = pts[this_span + 1].y - pts[this_span].y
            if (
                abs(dy) > eps
                and other_span + 1 < len(opts)
                and pts[this_span + 1].y >= opts[other_span + 1].x + eps
            ):
                this_x = pts[this_span].x + (opts[other_span + 1].x - pts[this_span].y) * dx / dy
                other_span += 1
                this_y = opts[other_span].x
            elif (
                abs(dy) > eps
                and other_span > 0
                and pts[this_span + 1].y <= opts[other_span - 1].x - eps
            ):
                this_x = pts[this_span].x + (opts[other_span + 1].x - pts[this_span].y) * dx / dy
                other_span -= 1
                this_y = opts[other_span].x
            else:
                this_span += 1
                this_x, this_y = pts[this_span].x, pts[this_span].y
            result.append(this_x, other.eval(this_y, other_span), eps)
        return result

    def map(self, f: Callable[[float, float], None]) -> None:
        """Call f(x, y) at every control point."""
        for p in self._points:
            f(p.x, p.y)

    @staticmethod
    def map2(pwl0: Pwl, pwl1: Pwl, f: Callable[[float, float, float], None]) -> None:
        """Call f(x, y0, y1) wherever either function has a control point."""
        pts0, pts1 = pwl0._points, pwl1._points
        span0 = span1 = 0
        x = min(pts0[0].x, pts1[0].x)
        f(x, pwl0.eval(x, span0), pwl1.eval(x, span1))
        while span0 < len(pts0) - 1 or span1 < len(pts1) - 1:
            if span0 == len(pts0) - 1:
                span1 += 1
                x = pts1[span1].x
            elif span1 == len(pts1) - 1:
                span0 += 1
                x = pts0[span0].x
            elif pts0[span0 + 1].x > pts1[span1 + 1].x:
                span1 += 1
                x = pts1[span1].x
            else:
                span0 += 1
                x = pts0[span0].x
            f(x, pwl0.eval(x, span0), pwl1.eval(x, span1))

    @staticmethod
    def combine(
        pwl0: Pwl, pwl1: Pwl, f: Callable[[float, float, float], float], eps: float = _EPS
    ) -> Pwl:
        """Build a function whose values are f(x, y0, y1) at every knot of either input."""
        result = Pwl()
        Pwl.map2(pwl0, pwl1, lambda x, y0, y1: result.append(x, f(x, y0, y1), eps))
        return result

    def match_domain(self, domain: Interval, clip: bool = True, eps: float = _EPS) -> None:
        """Extend to cover at least the given domain, clipped or linearly."""
        start_x = self._points[0].x if clip else domain.start
        self.prepend(domain.start, self.eval(start_x, 0), eps)
        end_x = self._points[-1].x if clip else domain.end
        self.append(domain.end, self.eval(end_x, len(self._points) - 2), eps)

    def generate_lut(self) -> list[float]:
        """Tabulate the function at 0, 1, ... up to the end of its domain."""
        end = int(self.domain().end + 1)
        span = 0
        lut = []
        for x in range(end):
            value, span = self.eval_span(x, span)
            lut.append(value)
        return lut

    def __imul__(self, factor: float) -> Pwl:
        self._points = [Point(p.x, p.y * factor) for p in self._points]
        return self

    def debug(self, fp: TextIO | None = None) -> None:
        out = fp if fp is not None else sys.stderr
        out.write("Pwl {\n")
        for p in self._points:
            out.write("\t(%g, %g)\n" % (p.x, p.y))
        out.write("}\n")