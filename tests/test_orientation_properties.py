"""
Property-based tests for the orientation filter.

These tests verify the two-vector attitude math, the smoothing bound and
the accelerometer-only fallback using Hypothesis.
"""

import math

import numpy as np
import pytest
from hypothesis import given, settings, assume
import hypothesis.strategies as st

from robo_sense.orientation import (
    OrientationFilter,
    accelerometer_tilt,
    orientation_from_matrix,
    rotation_matrix,
)
from robo_sense.smoother import ExponentialSmoother

HALF_PI = math.pi / 2

finite = dict(allow_nan=False, allow_infinity=False)

# Gravity vectors with the screen facing up (positive Z)
gravity_strategy = st.tuples(
    st.floats(min_value=-9.0, max_value=9.0, **finite),
    st.floats(min_value=-9.0, max_value=9.0, **finite),
    st.floats(min_value=0.5, max_value=10.0, **finite),
)

# Earth-like fields (microtesla) with a clear horizontal component
magnetic_strategy = st.tuples(
    st.floats(min_value=-30.0, max_value=30.0, **finite),
    st.floats(min_value=15.0, max_value=60.0, **finite),
    st.floats(min_value=-60.0, max_value=60.0, **finite),
)


def raw_tilt(gravity, magnetic):
    r = rotation_matrix(gravity, magnetic)
    _, pitch, roll = orientation_from_matrix(r)
    return pitch, roll


class TestRotationMatrix:

    def test_flat_device_has_zero_tilt(self):
        """Lying flat, screen up, top edge pointing north."""
        r = rotation_matrix((0.0, 0.0, 9.81), (0.0, 22.0, -40.0))
        assert r is not None
        np.testing.assert_allclose(r, np.eye(3), atol=1e-9)
        _, pitch, roll = orientation_from_matrix(r)
        assert pitch == pytest.approx(0.0, abs=1e-9)
        assert roll == pytest.approx(0.0, abs=1e-9)

    def test_field_parallel_to_gravity_is_degenerate(self):
        assert rotation_matrix((0.0, 0.0, 9.81), (0.0, 0.0, 40.0)) is None

    def test_free_fall_is_degenerate(self):
        assert rotation_matrix((0.0, 0.0, 0.0), (0.0, 22.0, -40.0)) is None

    @settings(max_examples=100)
    @given(gravity=gravity_strategy, magnetic=magnetic_strategy)
    def test_matrix_is_orthonormal(self, gravity, magnetic):
        """Property: any non-degenerate result is a proper rotation."""
        r = rotation_matrix(gravity, magnetic)
        assume(r is not None)
        np.testing.assert_allclose(r @ r.T, np.eye(3), atol=1e-6)
        assert np.linalg.det(r) == pytest.approx(1.0, abs=1e-6)


class TestFusedSmoothing:
    """
    For any valid two-sensor input, the fused pitch/roll stay within
    [-pi/2, pi/2] and move by exactly 0.1 of the distance to the raw
    estimate on every update.
    """

    @settings(max_examples=100)
    @given(
        readings=st.lists(st.tuples(gravity_strategy, magnetic_strategy),
                          min_size=1, max_size=30)
    )
    def test_fused_tilt_bounded_and_rate_limited(self, readings):
        f = OrientationFilter()

        for gravity, magnetic in readings:
            assume(rotation_matrix(gravity, magnetic) is not None)
            f.update_magnetometer(magnetic)
            prev_pitch, prev_roll = f.pitch, f.roll

            tilt = f.update_accelerometer(gravity)
            assert tilt is not None
            pitch, roll = tilt
            raw_pitch, raw_roll = raw_tilt(gravity, magnetic)

            for value in (pitch, roll):
                assert -HALF_PI - 1e-9 <= value <= HALF_PI + 1e-9, \
                    f"tilt {value} outside [-pi/2, pi/2]"
            assert abs(pitch - prev_pitch) <= 0.1 * abs(raw_pitch - prev_pitch) + 1e-9
            assert abs(roll - prev_roll) <= 0.1 * abs(raw_roll - prev_roll) + 1e-9

    @settings(max_examples=100)
    @given(
        first=st.tuples(gravity_strategy, magnetic_strategy),
        second=gravity_strategy,
    )
    def test_single_update_moves_one_tenth(self, first, second):
        """Property: |new - prev| == 0.1 * |raw - prev| for each angle."""
        gravity, magnetic = first
        assume(rotation_matrix(gravity, magnetic) is not None)
        assume(rotation_matrix(second, magnetic) is not None)

        f = OrientationFilter()
        f.update_magnetometer(magnetic)
        f.update_accelerometer(gravity)
        prev_pitch, prev_roll = f.pitch, f.roll

        pitch, roll = f.update_accelerometer(second)
        raw_pitch, raw_roll = raw_tilt(second, magnetic)

        assert abs(pitch - prev_pitch) == pytest.approx(0.1 * abs(raw_pitch - prev_pitch), abs=1e-9)
        assert abs(roll - prev_roll) == pytest.approx(0.1 * abs(raw_roll - prev_roll), abs=1e-9)


class TestAccelerometerFallback:
    """
    With no magnetometer reading, the filter still produces a tilt from the
    gravity direction and blends it in with 0.92/0.08.
    """

    def test_first_update_blends_eight_percent(self):
        f = OrientationFilter()
        g = 9.81
        x, y, z = 0.3 * g, -0.2 * g, math.sqrt(1 - 0.09 - 0.04) * g

        pitch, roll = f.update_accelerometer((x, y, z))

        assert roll == pytest.approx(0.08 * -math.asin(0.3))
        assert pitch == pytest.approx(0.08 * math.asin(-0.2))

    @settings(max_examples=100)
    @given(samples=st.lists(gravity_strategy, min_size=2, max_size=30))
    def test_fallback_recurrence(self, samples):
        """Property: smoothed = 0.92 * previous + 0.08 * raw on every sample."""
        f = OrientationFilter()
        for accel in samples:
            prev_pitch, prev_roll = f.pitch, f.roll
            raw_pitch, raw_roll = accelerometer_tilt(accel)
            pitch, roll = f.update_accelerometer(accel)
            assert pitch == pytest.approx(0.92 * prev_pitch + 0.08 * raw_pitch, abs=1e-12)
            assert roll == pytest.approx(0.92 * prev_roll + 0.08 * raw_roll, abs=1e-12)

    def test_zero_vector_gives_no_update(self):
        f = OrientationFilter()
        assert accelerometer_tilt((0.0, 0.0, 0.0)) is None
        assert f.update_accelerometer((0.0, 0.0, 0.0)) is None
        assert (f.pitch, f.roll) == (0.0, 0.0)

    def test_magnetometer_alone_gives_no_update(self):
        f = OrientationFilter()
        assert f.update_magnetometer((0.0, 22.0, -40.0)) is None

    def test_stale_magnetometer_falls_back(self):
        f = OrientationFilter(magnetometer_stale_after=0.5)
        gravity = (2.0, 1.0, 9.0)
        f.update_magnetometer((0.0, 22.0, -40.0), timestamp=0.0)

        pitch, roll = f.update_accelerometer(gravity, timestamp=2.0)

        raw_pitch, raw_roll = accelerometer_tilt(gravity)
        assert pitch == pytest.approx(0.08 * raw_pitch)
        assert roll == pytest.approx(0.08 * raw_roll)

    def test_fresh_magnetometer_is_fused(self):
        f = OrientationFilter(magnetometer_stale_after=0.5)
        gravity, magnetic = (2.0, 1.0, 9.0), (0.0, 22.0, -40.0)
        f.update_magnetometer(magnetic, timestamp=1.9)

        pitch, roll = f.update_accelerometer(gravity, timestamp=2.0)

        # The magnetometer update happened first, with no accelerometer yet
        raw_pitch, raw_roll = raw_tilt(gravity, magnetic)
        assert pitch == pytest.approx(0.1 * raw_pitch)
        assert roll == pytest.approx(0.1 * raw_roll)


class TestExponentialSmoother:

    def test_rejects_invalid_alpha(self):
        with pytest.raises(ValueError):
            ExponentialSmoother(alpha=0.0)
        with pytest.raises(ValueError):
            ExponentialSmoother().smooth([1.0, 1.0], alpha=1.5)

    def test_rejects_wrong_shape(self):
        with pytest.raises(ValueError):
            ExponentialSmoother(size=2).smooth([1.0, 2.0, 3.0])

    @settings(max_examples=100)
    @given(
        values=st.lists(st.floats(min_value=-2.0, max_value=2.0, **finite),
                        min_size=1, max_size=50),
        alpha=st.floats(min_value=0.01, max_value=1.0, **finite),
    )
    def test_output_bounded_by_inputs_and_initial(self, values, alpha):
        """Property: the state is a convex combination of zero and the inputs."""
        smoother = ExponentialSmoother(alpha=alpha, size=1)
        seen = [0.0]
        for value in values:
            seen.append(value)
            out = smoother.smooth([value])[0]
            assert min(seen) - 1e-12 <= out <= max(seen) + 1e-12

    def test_reset_restores_initial(self):
        smoother = ExponentialSmoother(alpha=0.5, size=2, initial=[1.0, -1.0])
        smoother.smooth([3.0, 3.0])
        smoother.reset()
        np.testing.assert_array_equal(smoother.current_state, [1.0, -1.0])
