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
"""Deterministic text rendering of floating-point values."""

from __future__ import annotations

import math
from collections.abc import Iterable

FLOAT_SIGNIFICANT_DIGITS = 17
"""Significant digits guaranteeing a lossless text round-trip of 64-bit floats."""

NAN_TOKEN = "NaN"
"""Token written for not-a-number values."""


def format_double(value: float) -> str:
    """
    Render a number in fixed scientific notation with 17 significant digits.

    Parameters
    ----------
    value : :obj:`float`
        The number to render.

    Returns
    -------
    :obj:`str`
        The rendered number.

    Examples
    --------
    >>> format_double(1000)
    '1.0000000000000000e+03'
    >>> format_double(-0.5)
    '-5.0000000000000000e-01'
    >>> format_double(float("nan"))
    'NaN'

    """
    value = float(value)
    if math.isnan(value):
        return NAN_TOKEN
    return f"{value:.{FLOAT_SIGNIFICANT_DIGITS - 1}e}"


def format_vector(values: Iterable[float], sep: str = ",") -> str:
    """
    Render a sequence of numbers with :func:`format_double`, joined by ``sep``.

    Examples
    --------
    >>> format_vector([0, 1])
    '0.0000000000000000e+00,1.0000000000000000e+00'

    """
    return sep.join(format_double(v) for v in values)
