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
"""Utilities for handling diffusion gradient tables."""

from __future__ import annotations

import logging

import numpy as np
import numpy.typing as npt

LOGGER = logging.getLogger(__name__)

UNIT_MAGNITUDE_TOLERANCE = 1e-2
"""Relative tolerance on the squared magnitude for a b-vector to be considered unitary."""

IDENTITY_FRAME_TOLERANCE = 1e-4
"""Absolute tolerance on the trace of a measurement frame to be considered the identity."""

DEFAULT_SMALL_GRADIENT_THRESHOLD = 0.2
"""Default threshold below which a vendor gradient is considered a :math:`b=0`."""

BVEC_ABSENCE_ERROR_MSG = "No b-vectors were provided."
"""b-vector absence error message."""

BVEC_OBJECT_ERROR_MSG = "b-vectors must be a numeric homogeneous array-like object"
"""b-vector object error message."""

BVEC_NDIM_ERROR_MSG = "b-vectors must be a 2D array"
"""b-vector dimensionality error message."""

BVEC_EXPECTED_COLUMNS_ERROR_MSG = "b-vectors must have three components (x, y, z)."
"""b-vector expected components error message."""

MEASUREMENT_FRAME_SHAPE_ERROR_MSG = "Measurement frame must be a 3x3 matrix, found shape {shape}."
"""Measurement frame shape error message."""


def format_bvecs(
    value: npt.ArrayLike | None,
    horizontal_by_3_rows: bool = True,
) -> np.ndarray:
    """
    Validate and orient a b-vector table to row-major convention.

    Parameters
    ----------
    value : :obj:`ArrayLike`
        The b-vectors, either as ``N`` rows of three components or as three rows
        of ``N`` components (FSL convention).
    horizontal_by_3_rows : :obj:`bool`, optional
        Resolve the ambiguous 3x3 case as three rows of ``N`` components.

    Returns
    -------
    :obj:`~numpy.ndarray`
        An ``(N, 3)`` float array.

    Raises
    ------
    exc:`ValueError`
        If ``value`` is missing, is not 2D, or has no axis of size three.

    Examples
    --------
    Column-major inputs are automatically transposed::

        >>> format_bvecs([[1, 0], [0, 1], [0, 0]])
        array([[1., 0., 0.],
               [0., 1., 0.]])

    Row-major inputs are returned unchanged::

        >>> format_bvecs([[1, 0, 0], [0, 1, 0]]).shape
        (2, 3)

    b-vectors must always have three components::

        >>> format_bvecs([[1, 0], [0, 1]])
        Traceback (most recent call last):
        ...
        ValueError: b-vectors must have three components (x, y, z).

    Passing ``None`` raises the absence error::

        >>> format_bvecs(None)
        Traceback (most recent call last):
        ...
        ValueError: No b-vectors were provided.

    """

    if value is None:
        raise ValueError(BVEC_ABSENCE_ERROR_MSG)

    try:
        formatted = np.asarray(value, dtype=float)
    except (TypeError, ValueError) as exc:
        # Conversion failed (e.g. nested ragged objects, non-numeric)
        raise TypeError(BVEC_OBJECT_ERROR_MSG) from exc

    if formatted.ndim != 2:
        raise ValueError(BVEC_NDIM_ERROR_MSG)

    # Transpose if column-major
    if formatted.shape[0] == 3 and (formatted.shape[1] != 3 or horizontal_by_3_rows):
        formatted = formatted.T

    if formatted.shape[1] != 3:
        raise ValueError(BVEC_EXPECTED_COLUMNS_ERROR_MSG)

    return np.ascontiguousarray(formatted)


def max_bvalue(bvals: npt.ArrayLike) -> float:
    """
    Nominal b-value of a table, i.e., its largest b-value (never below zero).

    Examples
    --------
    >>> max_bvalue([0, 1000, 2000.0])
    2000.0
    >>> max_bvalue([])
    0.0

    """
    bvals = np.asarray(bvals, dtype=float)
    return float(max(0.0, bvals.max())) if bvals.size else 0.0


def round_half_away(values: npt.ArrayLike) -> np.ndarray:
    """
    Round to the nearest integer, with ties away from zero.

    Examples
    --------
    >>> round_half_away([0.5, 1.5, 2.5, -2.5]).tolist()
    [1.0, 2.0, 3.0, -3.0]

    """
    values = np.asarray(values, dtype=float)
    return np.sign(values) * np.floor(np.abs(values) + 0.5)


def to_single_bvalue_scaled(
    bvals: npt.ArrayLike, bvecs: npt.ArrayLike
) -> tuple[np.ndarray, np.ndarray]:
    """
    Encode the diffusion weighting in the b-vector magnitudes (NRRD convention).

    All b-values are set to the nominal (largest) b-value, and each b-vector is
    scaled by :math:`\\sqrt{b_i / b_{max}}`.
    A table without diffusion weighting (:math:`b_{max} = 0`) yields null b-vectors.

    Parameters
    ----------
    bvals : :obj:`ArrayLike`
        The ``N`` b-values.
    bvecs : :obj:`ArrayLike`
        The ``(N, 3)`` b-vectors.

    Returns
    -------
    bvals : :obj:`~numpy.ndarray`
        The new b-values (all equal to the nominal b-value).
    bvecs : :obj:`~numpy.ndarray`
        The new, scaled b-vectors.

    Examples
    --------
    >>> bvals, bvecs = to_single_bvalue_scaled([0, 250, 1000], [[0, 0, 0], [1, 0, 0], [0, 1, 0]])
    >>> bvals.tolist()
    [1000.0, 1000.0, 1000.0]
    >>> bvecs.tolist()
    [[0.0, 0.0, 0.0], [0.5, 0.0, 0.0], [0.0, 1.0, 0.0]]

    """
    bvals = np.asarray(bvals, dtype=float)
    bvecs = np.asarray(bvecs, dtype=float)
    bmax = max_bvalue(bvals)

    scale = np.sqrt(bvals / bmax) if bmax > 0 else np.zeros_like(bvals)
    for index, factor in enumerate(scale):
        LOGGER.debug(
            "Scale factor for gradient %d: sqrt(%g / %g) = %g", index, bvals[index], bmax, factor
        )

    return np.full_like(bvals, bmax), bvecs * scale[:, np.newaxis]


def to_unit_scaled(
    bvals: npt.ArrayLike,
    bvecs: npt.ArrayLike,
    tolerance: float = UNIT_MAGNITUDE_TOLERANCE,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Encode the diffusion weighting in per-volume b-values (FSL convention).

    Each b-vector is normalized to unit length (null b-vectors stay null), and
    its b-value becomes :math:`round(b_{max} |v|^2)`.
    Squared magnitudes within ``tolerance`` of one are taken as exactly one.

    Parameters
    ----------
    bvals : :obj:`ArrayLike`
        The ``N`` b-values.
    bvecs : :obj:`ArrayLike`
        The ``(N, 3)`` b-vectors.
    tolerance : :obj:`float`, optional
        Tolerance on the squared magnitude to consider a b-vector unitary.

    Returns
    -------
    bvals : :obj:`~numpy.ndarray`
        The new, per-volume b-values.
    bvecs : :obj:`~numpy.ndarray`
        The new, unit-norm b-vectors.

    Examples
    --------
    >>> bvals, bvecs = to_unit_scaled([1000, 1000, 1000], [[0, 0, 0], [0.5, 0, 0], [0, 0.998, 0]])
    >>> bvals.tolist()
    [0.0, 250.0, 1000.0]
    >>> bvecs.tolist()
    [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]

    """
    bvals = np.asarray(bvals, dtype=float)
    bvecs = np.asarray(bvecs, dtype=float)
    bmax = max_bvalue(bvals)

    norms = np.linalg.norm(bvecs, axis=1)
    sqnorms = norms**2
    sqnorms[np.abs(sqnorms - 1.0) < tolerance] = 1.0

    unit = np.zeros_like(bvecs)
    nonzero = norms > 0
    unit[nonzero] = bvecs[nonzero] / norms[nonzero, np.newaxis]

    return round_half_away(bmax * sqnorms), unit


def validate_frame(frame: npt.ArrayLike) -> np.ndarray:
    """Convert ``frame`` into a 3x3 float matrix, or raise :exc:`ValueError`."""
    frame = np.array(frame, dtype=float)
    if frame.shape != (3, 3):
        raise ValueError(MEASUREMENT_FRAME_SHAPE_ERROR_MSG.format(shape=frame.shape))
    return frame


def is_identity_frame(frame: npt.ArrayLike, atol: float = IDENTITY_FRAME_TOLERANCE) -> bool:
    """
    Check whether a measurement frame is the identity, through its trace.

    Examples
    --------
    >>> is_identity_frame(np.eye(3))
    True
    >>> is_identity_frame(np.diag([1.0, -1.0, 1.0]))
    False

    """
    return bool(abs(np.trace(validate_frame(frame)) - 3.0) <= atol)


def to_identity_frame(bvecs: npt.ArrayLike, frame: npt.ArrayLike) -> tuple[np.ndarray, np.ndarray]:
    """
    Rotate b-vectors from the measurement frame into the patient frame.

    Each b-vector :math:`v` is replaced by :math:`F^{-1} v`.

    Parameters
    ----------
    bvecs : :obj:`ArrayLike`
        The ``(N, 3)`` b-vectors, expressed in the measurement frame.
    frame : :obj:`ArrayLike`
        The 3x3 measurement frame :math:`F`.

    Returns
    -------
    bvecs : :obj:`~numpy.ndarray`
        The rotated b-vectors.
    frame : :obj:`~numpy.ndarray`
        The new measurement frame (the identity).

    Examples
    --------
    >>> bvecs, frame = to_identity_frame([[1.0, 0.0, 0.0]], np.diag([-1.0, 1.0, 1.0]))
    >>> bvecs.tolist()
    [[-1.0, 0.0, 0.0]]

    """
    inverse = np.linalg.inv(validate_frame(frame))
    bvecs = np.asarray(bvecs, dtype=float)
    return (inverse @ bvecs.T).T, np.eye(3)
