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
"""Test the volume representation and its reshaping."""

import re

import numpy as np
import pytest

from dwiconvert.data.base import (
    DATAOBJ_ABSENCE_ERROR_MSG,
    DATAOBJ_NDIM_ERROR_MSG,
    DATAOBJ_OBJECT_ERROR_MSG,
    SCANNER_ANAT_XFORM,
    Volume,
    to_convention,
    to_four_d,
    to_three_d,
)
from dwiconvert.exceptions import ErrorKind, SliceCountError


@pytest.mark.parametrize(
    ("value", "expected_exc", "expected_msg"),
    [
        (None, ValueError, DATAOBJ_ABSENCE_ERROR_MSG),
        (1, TypeError, DATAOBJ_OBJECT_ERROR_MSG),
        (np.zeros((2, 2), dtype="int16"), ValueError, DATAOBJ_NDIM_ERROR_MSG),
        (np.zeros((2, 2, 2, 2, 2), dtype="int16"), ValueError, DATAOBJ_NDIM_ERROR_MSG),
        (np.zeros((2, 2, 2), dtype="float32"), TypeError, "16-bit signed samples"),
    ],
)
def test_volume_dataobj_validation(value, expected_exc, expected_msg):
    with pytest.raises(expected_exc, match=re.escape(expected_msg)):
        Volume(dataobj=value, spacing=np.ones(3), origin=np.zeros(3), direction=np.eye(3))


def test_volume_geometry_validation():
    data = np.zeros((2, 2, 2), dtype="int16")
    with pytest.raises(ValueError, match="spacing"):
        Volume(dataobj=data, spacing=np.ones(4), origin=np.zeros(3), direction=np.eye(3))

    with pytest.raises(ValueError, match="direction"):
        Volume(dataobj=data, spacing=np.ones(3), origin=np.zeros(3), direction=np.eye(4))

    with pytest.raises(ValueError, match="convention"):
        Volume(
            dataobj=data,
            spacing=np.ones(3),
            origin=np.zeros(3),
            direction=np.eye(3),
            convention="ras",
        )


def test_volume_tobytes(volume_factory):
    volume = volume_factory((2, 2, 2))
    raw = volume.tobytes()

    assert len(raw) == 2 * 2 * 2 * 2
    # Samples enumerate the linear order, hence the buffer reads back as a ramp
    assert np.frombuffer(raw, dtype="<i2").tolist() == list(range(8))


@pytest.mark.parametrize(
    ("shape", "n_volumes"),
    [
        ((2, 2, 2), 2),
        ((4, 3, 9), 3),
        ((3, 5, 6), 1),
        ((1, 1, 12), 12),
    ],
)
def test_four_d_round_trip(volume_factory, shape, n_volumes):
    volume = volume_factory(shape, spacing=(1.5, 2.0, 3.0), origin=(1.0, -2.0, 3.0))
    four_d = to_four_d(volume, n_volumes)

    assert four_d.shape == (*shape[:2], shape[2] // n_volumes, n_volumes)
    assert four_d.spacing.tolist() == [1.5, 2.0, 3.0, 1.0]
    assert four_d.origin.tolist() == [1.0, -2.0, 3.0, 0.0]
    assert np.array_equal(four_d.direction, np.eye(4))
    assert four_d.metadata["qform_code_name"] == SCANNER_ANAT_XFORM
    assert four_d.metadata["sform_code_name"] == SCANNER_ANAT_XFORM

    # The linear sample order is untouched by the reshaping
    assert four_d.tobytes() == volume.tobytes()
    assert to_three_d(four_d) == volume


def test_four_d_slab_assignment(volume_factory):
    """The t-th volume holds the t-th slab of consecutive slices."""
    volume = volume_factory((2, 3, 6))
    four_d = to_four_d(volume, 3)

    for t in range(3):
        assert np.array_equal(four_d.dataobj[..., t], volume.dataobj[..., 2 * t : 2 * (t + 1)])


def test_four_d_preserves_direction(volume_factory):
    direction = np.array([[0.0, 0.0, 1.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    four_d = to_four_d(volume_factory((2, 2, 4), direction=direction), 2)

    assert np.array_equal(four_d.direction[:3, :3], direction)
    assert four_d.direction[3].tolist() == [0.0, 0.0, 0.0, 1.0]
    assert four_d.direction[:, 3].tolist() == [0.0, 0.0, 0.0, 1.0]


def test_four_d_slice_count_error(volume_factory):
    with pytest.raises(SliceCountError, match="left-over slices = 1") as excinfo:
        to_four_d(volume_factory((2, 2, 9)), 2)

    assert excinfo.value.kind is ErrorKind.SLICE_COUNT
    assert "slices = 9, volumes = 2" in str(excinfo.value)


def test_four_d_zero_volumes(volume_factory):
    with pytest.raises(SliceCountError):
        to_four_d(volume_factory((2, 2, 4)), 0)


def test_reshaping_dimensionality(volume_factory):
    volume = volume_factory((2, 2, 4))
    with pytest.raises(ValueError, match="4D volume"):
        to_three_d(volume)

    with pytest.raises(ValueError, match="3D volume"):
        to_four_d(to_four_d(volume, 2), 2)


def test_convention_fsl(volume_factory):
    volume = volume_factory((2, 3, 2), spacing=(1.0, 2.0, 3.0))
    fsl = to_convention(volume, to_fsl=True)

    assert fsl.convention == "fsl"
    assert np.array_equal(fsl.dataobj, volume.dataobj[:, ::-1, :])
    assert fsl.direction[:, 1].tolist() == [0.0, -1.0, 0.0]
    assert fsl.origin.tolist() == [0.0, 4.0, 0.0]

    # Every sample keeps its location in patient space
    for index in np.ndindex(volume.shape):
        flipped = (index[0], volume.shape[1] - 1 - index[1], index[2])
        world = volume.origin + volume.direction @ (volume.spacing * index)
        world_fsl = fsl.origin + fsl.direction @ (fsl.spacing * flipped)
        assert np.allclose(world, world_fsl)
        assert volume.dataobj[index] == fsl.dataobj[flipped]


def test_convention_round_trip(volume_factory):
    volume = to_four_d(volume_factory((3, 4, 6), spacing=(0.5, 1.5, 2.0), origin=(5, 6, 7)), 2)
    restored = to_convention(to_convention(volume, to_fsl=True), to_fsl=False)

    assert restored == volume
    assert restored.convention == "lps"
    assert restored.dataobj.flags.f_contiguous


def test_convention_already_in_target(volume_factory):
    volume = volume_factory((2, 2, 2))
    with pytest.warns(UserWarning, match="already in the 'lps' data layout"):
        same = to_convention(volume, to_fsl=False)

    assert same == volume
    assert same.dataobj is not volume.dataobj
