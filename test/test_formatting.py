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
"""Test the rendering of floating-point values."""

import numpy as np
import pytest

from dwiconvert.utils.formatting import NAN_TOKEN, format_double, format_vector


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0.0, "0.0000000000000000e+00"),
        (1.0, "1.0000000000000000e+00"),
        (2.5, "2.5000000000000000e+00"),
        (-1.0, "-1.0000000000000000e+00"),
        (np.float32(0.1), "1.0000000149011612e-01"),
    ],
)
def test_format_double(value, expected):
    assert format_double(value) == expected


def test_format_double_nan():
    assert format_double(np.nan) == NAN_TOKEN


@pytest.mark.parametrize("value", [0.1, 1 / 3, np.pi, -2.0 / 7.0, 1234567.891011])
def test_format_double_lossless(value):
    """Rendered values read back as the very same 64-bit float."""
    assert float(format_double(value)) == value


def test_format_vector():
    assert format_vector([1, 0, np.nan], sep="   ") == (
        "1.0000000000000000e+00   0.0000000000000000e+00   NaN"
    )
    assert format_vector([]) == ""
