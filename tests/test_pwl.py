import io

import pytest

from campostproc.pwl import Interval, PerpType, Point, Pwl


def test_interval_contains_and_clip():
    iv = Interval(1.0, 4.0)
    assert iv.contains(1.0) and iv.contains(4.0)
    assert not iv.contains(4.5)
    assert iv.clip(0.0) == 1.0
    assert iv.clip(9.0) == 4.0
    assert iv.clip(2.5) == 2.5
    assert iv.length() == 3.0


def test_point_arithmetic():
    a, b = Point(3, 4), Point(1, 2)
    assert a - b == Point(2, 2)
    assert a + b == Point(4, 6)
    assert a * 2 == Point(6, 8)
    assert a / 2 == Point(1.5, 2)
    assert a.dot(b) == 11
    assert a.len2() == 25
    assert a.length() == 5


def test_read_flat_list():
    pwl = Pwl()
    pwl.read([0, 0, 1, 2, 3, 5])
    assert pwl.points == (Point(0, 0), Point(1, 2), Point(3, 5))


def test_read_rejects_non_increasing():
    with pytest.raises(ValueError):
        Pwl().read([0, 0, 0, 1])


def test_read_rejects_too_few_points():
    with pytest.raises(ValueError):
        Pwl().read([0, 0])


def test_read_rejects_odd_count():
    with pytest.raises(ValueError):
        Pwl().read([0, 0, 1])


def test_append_and_prepend_respect_eps():
    pwl = Pwl([(0, 0), (1, 1)])
    pwl.append(1.0 + 1e-9, 5)
    pwl.prepend(-1e-9, 5)
    assert len(pwl) == 2
    pwl.append(2, 3)
    pwl.prepend(-1, 4)
    assert pwl.points[0] == Point(-1, 4)
    assert pwl.points[-1] == Point(2, 3)


def test_domain_range_empty():
    pwl = Pwl([(0, 3), (2, -1), (5, 7)])
    assert pwl.domain() == Interval(0, 5)
    assert pwl.range() == Interval(-1, 7)
    assert not pwl.empty()
    assert Pwl().empty()


def test_eval_at_control_points():
    pts = [(0, 3), (2, -1), (5, 7), (9, 2)]
    pwl = Pwl(pts)
    for x, y in pts:
        assert pwl.eval(x) == pytest.approx(y)


def test_eval_is_linear_between_points():
    pwl = Pwl([(0, 0), (4, 8), (10, 8)])
    mid = pwl.eval(2)
    assert mid == pytest.approx((pwl.eval(0) + pwl.eval(4)) / 2)


def test_eval_span_reports_span_regardless_of_hint():
    pwl = Pwl([(0, 0), (1, 1), (2, 0), (3, 1)])
    for hint in (-1, 0, 1, 2, 5):
        value, span = pwl.eval_span(2.5, hint)
        assert span == 2
        assert value == pytest.approx(pwl.eval(2.5))


def test_invert_perpendicular():
    pwl = Pwl([(0, 0), (10, 0)])
    kind, perp, span = pwl.invert(Point(5, 5))
    assert kind is PerpType.PERPENDICULAR
    assert perp == Point(5, 0)
    assert span == 0


def test_invert_start_and_end():
    pwl = Pwl([(0, 0), (10, 0)])
    kind, perp, _ = pwl.invert(Point(-5, 3))
    assert kind is PerpType.START and perp == Point(0, 0)
    kind, perp, _ = pwl.invert(Point(15, 1))
    assert kind is PerpType.END and perp == Point(10, 0)


def test_invert_vertex_and_not_found():
    pwl = Pwl([(0, 0), (10, 0), (10, 10)])
    kind, perp, span = pwl.invert(Point(12, -2))
    assert kind is PerpType.VERTEX
    assert perp == Point(10, 0)
    assert span == 1
    two = Pwl([(0, 0), (1, 1)])
    kind, perp, _ = two.invert(Point(0.5, 0.5), 0)
    assert kind is PerpType.NOT_FOUND and perp is None


def test_invert_rejects_bad_span():
    with pytest.raises(ValueError):
        Pwl([(0, 0), (1, 1)]).invert(Point(0, 0), -2)


def test_compose_with_identity():
    f = Pwl([(0, 0), (5, 8), (10, 10)])
    identity = Pwl([(0, 0), (10, 10)])
    assert f.compose(identity) == f


def test_compose_matches_nested_evaluation():
    f = Pwl([(0, 0), (10, 10)])
    g = Pwl([(0, 0), (5, 10), (10, 10)])
    h = f.compose(g)
    for x in (0, 1, 2.5, 5, 7, 10):
        assert h.eval(x) == pytest.approx(g.eval(f.eval(x)))


def test_map_visits_every_point():
    pwl = Pwl([(0, 1), (2, 3)])
    seen = []
    pwl.map(lambda x, y: seen.append((x, y)))
    assert seen == [(0, 1), (2, 3)]


def test_map2_visits_union_of_knots():
    a = Pwl([(0, 0), (2, 2), (4, 0)])
    b = Pwl([(1, 0), (3, 3)])
    xs = []
    Pwl.map2(a, b, lambda x, y0, y1: xs.append(x))
    assert xs == [0, 1, 2, 3, 4]


def test_combine_sums_values():
    a = Pwl([(0, 0), (2, 2), (4, 0)])
    b = Pwl([(0, 1), (4, 5)])
    c = Pwl.combine(a, b, lambda x, y0, y1: y0 + y1)
    for x in (0, 1, 2, 3, 4):
        assert c.eval(x) == pytest.approx(a.eval(x) + b.eval(x))


def test_match_domain_clipped():
    pwl = Pwl([(1, 2), (3, 6)])
    pwl.match_domain(Interval(0, 5))
    assert pwl.domain() == Interval(0, 5)
    assert pwl.points[0].y == 2
    assert pwl.points[-1].y == 6


def test_match_domain_linear_extension_stays_on_line():
    pwl = Pwl([(1, 2), (3, 6)])
    original = Pwl(pwl.points)
    pwl.match_domain(Interval(0, 5), clip=False)
    assert pwl.eval(0) == pytest.approx(original.eval(0))
    assert pwl.eval(5) == pytest.approx(original.eval(5))


def test_generate_lut():
    pwl = Pwl([(0, 0), (3, 9), (7.5, 0)])
    lut = pwl.generate_lut()
    assert len(lut) == int(7.5 + 1)
    for x, value in enumerate(lut):
        assert value == pytest.approx(pwl.eval(x))


def test_scale_in_place():
    pwl = Pwl([(0, 1), (2, 3)])
    pwl *= 2
    assert pwl.points == (Point(0, 2), Point(2, 6))


def test_debug_format():
    out = io.StringIO()
    Pwl([(0, 0), (1, 2.5)]).debug(out)
    assert out.getvalue() == "Pwl {\n\t(0, 0)\n\t(1, 2.5)\n}\n"