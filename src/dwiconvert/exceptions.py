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
"""
Conversion errors.

Every fatal condition raised by *dwiconvert* is a :class:`DWIConvertError` tagged
with an :class:`ErrorKind`, so that callers may either catch the whole family or
dispatch on :attr:`DWIConvertError.kind`.
Both :class:`ConfigurationError` and :class:`ConsistencyError` derive from
:exc:`ValueError`.
I/O failures are never wrapped: they propagate as the :exc:`OSError` raised by
the writer.

"""

from enum import Enum


class ErrorKind(Enum):
    """Failure kinds reported by the conversion layer."""

    CONFIGURATION = "configuration"
    GRADIENT_COUNT = "gradient-count"
    SLICE_COUNT = "slice-count"
    MEASUREMENT_FRAME = "measurement-frame"


class DWIConvertError(Exception):
    """Base class for fatal conversion errors."""

    kind: ErrorKind


class ConfigurationError(DWIConvertError, ValueError):
    """The requested output is misconfigured (e.g., unrecognized extension)."""

    kind = ErrorKind.CONFIGURATION


class ConsistencyError(DWIConvertError, ValueError):
    """The data model violates one of its invariants."""


class GradientCountError(ConsistencyError):
    """Gradient, b-value and volume counts disagree."""

    kind = ErrorKind.GRADIENT_COUNT


class SliceCountError(ConsistencyError):
    """The number of slices is not a multiple of the number of volumes."""

    kind = ErrorKind.SLICE_COUNT


class MeasurementFrameError(ConsistencyError):
    """The measurement frame is not the identity where it is required to be."""

    kind = ErrorKind.MEASUREMENT_FRAME
