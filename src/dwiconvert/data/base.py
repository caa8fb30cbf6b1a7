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
"""Unwrapped (3D) and canonical (4D) volume representation."""

from __future__ import annotations

import logging
from typing import Any
from warnings import warn

import attrs
import numpy as np

from dwiconvert.exceptions import SliceCountError

LOGGER = logging.getLogger(__name__)

SAMPLE_DTYPE = np.dtype("int16")
"""Storage type of the diffusion samples."""

LPS_AXIS_FLIPS = (1, 1, 1, 1)
"""Axis signs of the patient (LPS, DICOM-natural) data layout."""

FSL_AXIS_FLIPS = (1, -1, 1, 1)
"""Axis signs of the FSL data layout (second voxel axis reversed w.r.t. LPS)."""

CONVENTIONS = {"lps": LPS_AXIS_FLIPS, "fsl": FSL_AXIS_FLIPS}
"""Fixed table of data layout conventions."""

SCANNER_ANAT_XFORM = "NIFTI_XFORM_SCANNER_ANAT"
"""Orientation code attached to 4D volumes."""

DATAOBJ_ABSENCE_ERROR_MSG = "Volume 'dataobj' may not be None"
"""Volume initialization dataobj absence error message."""

DATAOBJ_OBJECT_ERROR_MSG = "Volume 'dataobj' must be a numpy array."
"""Volume initialization dataobj object error message."""

DATAOBJ_NDIM_ERROR_MSG = "Volume 'dataobj' must be a 3-D or 4-D array"
"""Volume initialization dataobj dimensionality error message."""

DATAOBJ_DTYPE_ERROR_MSG = "Volume 'dataobj' must hold 16-bit signed samples, found {dtype}."
"""Volume initialization dataobj sample type error message."""

GEOMETRY_SHAPE_ERROR_MSG = "Volume '{name}' must have shape {expected}, found {found}."
"""Volume initialization geometry shape error message."""

CONVENTION_ERROR_MSG = "Unknown data layout convention '{convention}'."
"""Volume initialization convention error message."""

SLICE_COUNT_ERROR_MSG = """\
Number of slices in volume is not evenly divisible by the number of volumes: \
slices = {slices}, volumes = {volumes}, left-over slices = {remainder}."""
"""Unwrapped volume slice count vs. volume count error message."""


def _data_repr(value: Any) -> str:
    if value is None:
        return "None"

    shape = getattr(value, "shape", None)
    dtype = getattr(value, "dtype", None)
    if shape is None:
        return repr(value)

    return f"<{'x'.join(str(v) for v in tuple(shape))} ({dtype})>"


def _cmp(lh: Any, rh: Any) -> bool:
    if hasattr(lh, "shape") and hasattr(rh, "shape"):
        lh, rh = np.asarray(lh), np.asarray(rh)
        return lh.shape == rh.shape and bool(np.allclose(lh, rh))

    return lh == rh


def _as_float_array(value: Any) -> np.ndarray:
    return np.array(value, dtype=float)


def validate_dataobj(inst: Volume, attr: attrs.Attribute, value: Any) -> None:
    """Strict validator for data objects.

    Enforces that ``value`` is a 3D or 4D :obj:`~numpy.ndarray` of 16-bit
    signed samples.

    This function is intended for use as an attrs-style validator.

    Parameters
    ----------
    inst : :obj:`~dwiconvert.data.base.Volume`
        The instance being validated (unused, present for validator signature).
    attr : :obj:`~attrs.Attribute`
        The attribute being validated (unused, present for validator signature).
    value : :obj:`Any`
        The value to validate.

    Raises
    ------
    exc:`TypeError`
        If the input is not a :obj:`~numpy.ndarray` of 16-bit signed integers.
    exc:`ValueError`
        If the value is :obj:`None`, or not 3- or 4-dimensional.

    Examples
    --------
    >>> validate_dataobj(None, None, np.zeros((2, 2, 2), dtype="int16"))
    >>> validate_dataobj(None, None, np.zeros((2, 2), dtype="int16"))
    Traceback (most recent call last):
    ...
    ValueError: Volume 'dataobj' must be a 3-D or 4-D array

    """
    if value is None:
        raise ValueError(DATAOBJ_ABSENCE_ERROR_MSG)

    if not isinstance(value, np.ndarray):
        raise TypeError(DATAOBJ_OBJECT_ERROR_MSG)

    if value.ndim not in (3, 4):
        raise ValueError(DATAOBJ_NDIM_ERROR_MSG)

    if value.dtype != SAMPLE_DTYPE:
        raise TypeError(DATAOBJ_DTYPE_ERROR_MSG.format(dtype=value.dtype))


def _validate_geometry(inst: Volume, attr: attrs.Attribute, value: np.ndarray) -> None:
    ndim = inst.dataobj.ndim
    expected = (ndim, ndim) if attr.name == "direction" else (ndim,)
    if value.shape != expected:
        raise ValueError(
            GEOMETRY_SHAPE_ERROR_MSG.format(name=attr.name, expected=expected, found=value.shape)
        )


def _validate_convention(inst: Volume, attr: attrs.Attribute, value: str) -> None:
    if value not in CONVENTIONS:
        raise ValueError(CONVENTION_ERROR_MSG.format(convention=value))


@attrs.define(slots=True, eq=False)
class Volume:
    """
    A 3D (unwrapped) or 4D (canonical) image with its LPS geometry.

    The sample buffer is indexed ``[x, y, z]`` (or ``[x, y, z, volume]``) and its
    linear layout follows Fortran order, i.e., the first index varies fastest,
    which is how the samples are laid out on disk.
    The last slices of an unwrapped volume therefore belong to the last
    diffusion-encoded volume.

    """

    dataobj: np.ndarray = attrs.field(repr=_data_repr, validator=validate_dataobj)
    """The array of samples."""
    spacing: np.ndarray = attrs.field(
        converter=_as_float_array, repr=_data_repr, validator=_validate_geometry
    )
    """Voxel size along each axis."""
    origin: np.ndarray = attrs.field(
        converter=_as_float_array, repr=_data_repr, validator=_validate_geometry
    )
    """LPS coordinates of the first voxel's center."""
    direction: np.ndarray = attrs.field(
        converter=_as_float_array, repr=_data_repr, validator=_validate_geometry
    )
    """Direction cosines of the voxel axes (one per column)."""
    metadata: dict = attrs.field(factory=dict)
    """Free-form metadata (the NIfTI writer reads ``qform_code_name``/``sform_code_name``)."""
    convention: str = attrs.field(default="lps", validator=_validate_convention)
    """Data layout convention, one of :data:`CONVENTIONS`."""

    def __eq__(self, other: object) -> bool:
        if type(self) is not type(other):
            return NotImplemented

        assert isinstance(other, Volume)
        return (
            self.dataobj.shape == other.dataobj.shape
            and np.array_equal(self.dataobj, other.dataobj)
            and _cmp(self.spacing, other.spacing)
            and _cmp(self.origin, other.origin)
            and _cmp(self.direction, other.direction)
            and self.convention == other.convention
        )

    @property
    def shape(self) -> tuple[int, ...]:
        return self.dataobj.shape

    @property
    def ndim(self) -> int:
        return self.dataobj.ndim

    def tobytes(self) -> bytes:
        """Serialize the samples as packed little-endian 16-bit integers."""
        return self.dataobj.astype("<i2").tobytes(order="F")


def check_divisible(slices: int, volumes: int) -> None:
    """Check that ``slices`` splits evenly into ``volumes`` slabs."""
    if volumes < 1 or slices % volumes:
        raise SliceCountError(
            SLICE_COUNT_ERROR_MSG.format(
                slices=slices,
                volumes=volumes,
                remainder=slices % volumes if volumes > 0 else slices,
            )
        )


def to_four_d(volume: Volume, n_volumes: int) -> Volume:
    """
    Reinterpret an unwrapped 3D volume as a 4D volume.

    Parameters
    ----------
    volume : :obj:`~dwiconvert.data.base.Volume`
        The unwrapped volume, with ``n_volumes`` slabs concatenated along the
        slice axis.
    n_volumes : :obj:`int`
        The number of diffusion-encoded volumes.

    Returns
    -------
    :obj:`~dwiconvert.data.base.Volume`
        A new volume of shape ``(x, y, slices / n_volumes, n_volumes)``.
        The fourth axis has identity direction, unit spacing and zero origin.

    Raises
    ------
    :exc:`~dwiconvert.exceptions.SliceCountError`
        If the number of slices is not a multiple of ``n_volumes``.

    Examples
    --------
    >>> data = np.arange(18, dtype="int16").reshape((1, 2, 9))
    >>> vol = Volume(data, np.ones(3), np.zeros(3), np.eye(3))
    >>> to_four_d(vol, 3).shape
    (1, 2, 3, 3)
    >>> to_four_d(vol, 2)
    Traceback (most recent call last):
    ...
    dwiconvert.exceptions.SliceCountError: Number of slices ... left-over slices = 1.

    """
    if volume.ndim != 3:
        raise ValueError(f"Expected an unwrapped 3D volume, got {volume.ndim} dimensions.")

    size_x, size_y, slices = volume.shape
    check_divisible(slices, n_volumes)

    direction = np.eye(4)
    direction[:3, :3] = volume.direction
    metadata = dict(volume.metadata)
    metadata["qform_code_name"] = SCANNER_ANAT_XFORM
    metadata["sform_code_name"] = SCANNER_ANAT_XFORM

    return Volume(
        dataobj=volume.dataobj.reshape(
            (size_x, size_y, slices // n_volumes, n_volumes), order="F"
        ).copy(order="F"),
        spacing=np.append(volume.spacing, 1.0),
        origin=np.append(volume.origin, 0.0),
        direction=direction,
        metadata=metadata,
        convention=volume.convention,
    )


def to_three_d(volume: Volume) -> Volume:
    """
    Unwrap a 4D volume, concatenating all its volumes along the slice axis.

    This is the exact inverse of :func:`to_four_d`: the samples and the geometry of the
    three spatial axes are copied back, and the fourth axis geometry is dropped.

    Raises
    ------
    :exc:`~dwiconvert.exceptions.SliceCountError`
        If the volume count is not positive.

    """
    if volume.ndim != 4:
        raise ValueError(f"Expected a 4D volume, got {volume.ndim} dimensions.")

    size_x, size_y, slices_per_volume, n_volumes = volume.shape
    slices = slices_per_volume * n_volumes
    check_divisible(slices, n_volumes)

    metadata = dict(volume.metadata)
    metadata["qform_code_name"] = SCANNER_ANAT_XFORM
    metadata["sform_code_name"] = SCANNER_ANAT_XFORM

    return Volume(
        dataobj=volume.dataobj.reshape((size_x, size_y, slices), order="F").copy(order="F"),
        spacing=volume.spacing[:3],
        origin=volume.origin[:3],
        direction=volume.direction[:3, :3],
        metadata=metadata,
        convention=volume.convention,
    )


def to_convention(volume: Volume, to_fsl: bool = True) -> Volume:
    """
    Reorder the samples to the FSL data layout or back to the LPS layout.

    The conventions are described by the fixed tables :data:`LPS_AXIS_FLIPS` and
    :data:`FSL_AXIS_FLIPS`.
    Each axis whose sign differs between the current and the target convention
    is reversed, its direction cosine negated and the origin moved to the opposite
    end of that axis, so every sample keeps its location in patient space.
    Converting to FSL and back restores the original layout.

    Parameters
    ----------
    volume : :obj:`~dwiconvert.data.base.Volume`
        The volume to reorder.
    to_fsl : :obj:`bool`, optional
        If ``True`` target the FSL layout, otherwise the LPS (DICOM-natural) layout.

    Returns
    -------
    :obj:`~dwiconvert.data.base.Volume`
        A new, reordered volume.

    """
    target = "fsl" if to_fsl else "lps"
    if volume.convention == target:
        warn(f"Volume is already in the '{target}' data layout.", stacklevel=2)
        return attrs.evolve(volume, dataobj=volume.dataobj.copy(order="F"))

    current_flips = CONVENTIONS[volume.convention]
    target_flips = CONVENTIONS[target]

    dataobj = volume.dataobj
    direction = volume.direction.copy()
    origin = volume.origin.copy()
    for axis, (current, wanted) in enumerate(zip(current_flips, target_flips, strict=False)):
        if axis >= min(volume.ndim, 3) or current == wanted:
            continue

        LOGGER.debug("Reversing axis %d for the '%s' data layout.", axis, target)
        dataobj = np.flip(dataobj, axis=axis)
        extent = volume.spacing[axis] * (volume.shape[axis] - 1)
        origin[:3] = origin[:3] + direction[:3, axis] * extent
        direction[:3, axis] = -direction[:3, axis]

    return attrs.evolve(
        volume,
        dataobj=dataobj.copy(order="F"),
        origin=origin,
        direction=direction,
        convention=target,
    )
