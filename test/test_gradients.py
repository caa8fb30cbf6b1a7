# emacs: -*- mode: python; py-indent-offset: 4; indent-tabs-mode: nil -*-
# vi: set ft=python sts=4 ts=4 sw=4 et:
#
# Copyright The NiPreps Developers <nipreps@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# We support and encourage derived works from this project, please read
# about our expectations at
#
#     https://www.nipreps.org/community/licensing/
#
"""Unit tests exercising the gradient table normalizations."""

import re

import numpy as np
import pytest

from dwiconvert.data.dmri.base import (
    BVALUE_NEGATIVE_ERROR_MSG,
    GRADIENT_NONFINITE_ERROR_MSG,
    GradientTable,
)
from dwiconvert.data.dmri.utils import (
    BVEC_ABSENCE_ERROR_MSG,
    BVEC_EXPECTED_COLUMNS_ERROR_MSG,
    BVEC_NDIM_ERROR_MSG,
    BVEC_OBJECT_ERROR_MSG,
    format_bvecs,
    is_identity_frame,
    max_bvalue,
    round_half_away,
    to_identity_frame,
    to_single_bvalue_scaled,
    to_unit_scaled,
)
from dwiconvert.exceptions import ErrorKind, GradientCountError

B_MATRIX = np.array(
    [
        [0.0, 0.0, 0.0, 0],
        [1.0, 0.0, 0.0, 500],
        [0.0, 1.0, 0.0, 1000],
        [0.0, 0.0, 1.0, 1000],
        [1 / np.sqrt(2), 1 / np.sqrt(2), 0.0, 1000],
        [1 / np.sqrt(2), 0.0, 1 / np.sqrt(2), 2000],
        [1 / np.sqrt(3), 1 / np.sqrt(3), 1 / np.sqrt(3), 2000],
        [-1 / np.sqrt(3), 1 / np.sqrt(3), 1 / np.sqrt(3), 3000],
    ]
)


def _rotation_z(angle):
    cos, sin = np.cos(angle), np.sin(angle)
    return np.array([[cos, -sin, 0.0], [sin, cos, 0.0], [0.0, 0.0, 1.0]])


@pytest.mark.parametrize(
    ("value", "expected_exc", "expected_msg"),
    [
        (None, ValueError, BVEC_ABSENCE_ERROR_MSG),
        ([[1, 0, 0], [0, 1]], TypeError, BVEC_OBJECT_ERROR_MSG),
        ([1, 0, 0], ValueError, BVEC_NDIM_ERROR_MSG),
        ([[1, 0, 0, 0], [0, 1, 0, 0]], ValueError, BVEC_EXPECTED_COLUMNS_ERROR_MSG),
    ],
)
def test_format_bvecs_errors(value, expected_exc, expected_msg):
    with pytest.raises(expected_exc, match=re.escape(expected_msg)):
        format_bvecs(value)


def test_format_bvecs_three_by_three():
    table = np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0], [7.0, 8.0, 9.0]])

    assert np.array_equal(format_bvecs(table, horizontal_by_3_rows=True), table.T)
    assert np.array_equal(format_bvecs(table, horizontal_by_3_rows=False), table)


def test_max_bvalue():
    assert max_bvalue(B_MATRIX[:, 3]) == 3000.0
    assert max_bvalue(np.zeros(4)) == 0.0


def test_round_half_away():
    assert round_half_away([0.49, 0.5, -0.5, 999.5, 1000.4999]).tolist() == [
        0.0,
        1.0,
        -1.0,
        1000.0,
        1000.0,
    ]


def test_single_bvalue_scaled():
    bvals, bvecs = to_single_bvalue_scaled(B_MATRIX[:, 3], B_MATRIX[:, :3])

    assert np.all(bvals == 3000.0)
    norms = np.linalg.norm(bvecs, axis=1)
    assert np.allclose(norms, np.sqrt(B_MATRIX[:, 3] / 3000.0))
    # Directions are preserved
    nonzero = norms > 0
    assert np.allclose(
        bvecs[nonzero] / norms[nonzero, np.newaxis],
        B_MATRIX[nonzero, :3],
    )


def test_single_bvalue_scaled_no_weighting():
    bvals, bvecs = to_single_bvalue_scaled(np.zeros(3), np.eye(3))

    assert bvals.tolist() == [0.0, 0.0, 0.0]
    assert not np.any(bvecs)


def test_unit_scaled_clamps_magnitude():
    """Squared magnitudes within tolerance of one yield exactly the nominal b-value."""
    bvecs = np.array([[0.0, 0.0, np.sqrt(0.995)], [np.sqrt(1.004), 0.0, 0.0], [0.0, 0.9, 0.0]])
    bvals, unit = to_unit_scaled(np.full(3, 1000.0), bvecs)

    assert bvals.tolist() == [1000.0, 1000.0, 810.0]
    assert np.allclose(np.linalg.norm(unit, axis=1), 1.0)


def test_unit_scaled_tolerance():
    bvecs = np.array([[0.0, 0.0, np.sqrt(0.995)]])

    bvals, _ = to_unit_scaled([1000.0], bvecs, tolerance=1e-3)
    assert bvals.tolist() == [995.0]


def test_unit_scaled_null_bvecs():
    bvals, unit = to_unit_scaled([1000.0, 1000.0], [[0.0, 0.0, 0.0], [0.0, 0.0, 1.0]])

    assert bvals.tolist() == [0.0, 1000.0]
    assert unit.tolist() == [[0.0, 0.0, 0.0], [0.0, 0.0, 1.0]]


def test_normalization_round_trip():
    """NRRD scaling followed by FSL scaling restores the original table."""
    bvals, bvecs = to_unit_scaled(*to_single_bvalue_scaled(B_MATRIX[:, 3], B_MATRIX[:, :3]))

    assert np.array_equal(bvals, B_MATRIX[:, 3])
    assert np.allclose(bvecs, B_MATRIX[:, :3])


def test_normalization_round_trip_single_shell():
    bvecs = B_MATRIX[1:, :3]
    bvals = np.full(len(bvecs), 1000.0)
    nrrd_bvals, nrrd_bvecs = to_single_bvalue_scaled(*to_unit_scaled(bvals, bvecs))

    assert np.array_equal(nrrd_bvals, bvals)
    assert np.allclose(nrrd_bvecs, bvecs)


def test_is_identity_frame():
    assert is_identity_frame(np.eye(3))
    assert is_identity_frame(np.eye(3) + 1e-6)
    assert not is_identity_frame(np.diag([1.0, -1.0, 1.0]))
    assert not is_identity_frame(_rotation_z(0.1))

    with pytest.raises(ValueError, match="3x3"):
        is_identity_frame(np.eye(4))


def test_identity_frame_round_trip():
    frame = _rotation_z(np.pi / 6)
    bvecs, new_frame = to_identity_frame(B_MATRIX[:, :3], frame)

    assert np.array_equal(new_frame, np.eye(3))
    assert np.allclose(np.linalg.norm(bvecs, axis=1), np.linalg.norm(B_MATRIX[:, :3], axis=1))
    assert np.allclose((frame @ bvecs.T).T, B_MATRIX[:, :3])


def test_gradient_table():
    table = GradientTable(B_MATRIX[:, 3], B_MATRIX[:, :3].T)

    assert len(table) == len(B_MATRIX)
    assert table.bvecs.shape == (len(B_MATRIX), 3)
    assert np.allclose(table.gradients, B_MATRIX)
    assert table.max_bvalue == 3000.0

    bval, bvec = table[2]
    assert bval == 1000.0
    assert bvec.tolist() == [0.0, 1.0, 0.0]


def test_gradient_table_immutable():
    table = GradientTable([0, 1000], [[0, 0, 0], [1, 0, 0]])
    scaled = table.to_unit_scaled()

    assert scaled is not table
    assert scaled == table
    assert table.to_single_bvalue_scaled() != table


def test_gradient_table_rotate():
    table = GradientTable(B_MATRIX[:, 3], B_MATRIX[:, :3])
    frame = _rotation_z(np.pi / 3)
    bvecs, _ = to_identity_frame(table.bvecs, frame)

    assert GradientTable(table.bvals, bvecs).rotate(frame) == table


@pytest.mark.parametrize(
    ("bvals", "bvecs", "expected_exc", "expected_msg"),
    [
        ([0, -5], [[0, 0, 0], [1, 0, 0]], ValueError, BVALUE_NEGATIVE_ERROR_MSG),
        ([0, np.nan], [[0, 0, 0], [1, 0, 0]], ValueError, GRADIENT_NONFINITE_ERROR_MSG),
        ([0, 1000], [[0, 0, 0], [np.inf, 0, 0]], ValueError, GRADIENT_NONFINITE_ERROR_MSG),
    ],
)
def test_gradient_table_validation(bvals, bvecs, expected_exc, expected_msg):
    with pytest.raises(expected_exc, match=re.escape(expected_msg)):
        GradientTable(bvals, bvecs)


def test_gradient_table_count_mismatch():
    with pytest.raises(GradientCountError) as excinfo:
        GradientTable([0, 1000, 1000], [[0, 0, 0], [1, 0, 0]])

    assert excinfo.value.kind is ErrorKind.GRADIENT_COUNT
    assert isinstance(excinfo.value, ValueError)
