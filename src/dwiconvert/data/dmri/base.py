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
"""DWI data representation type."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import attrs
import nibabel as nb
import numpy as np
import numpy.typing as npt
from typing_extensions import Self

from dwiconvert.data.base import Volume, _cmp, _data_repr, check_divisible, to_four_d
from dwiconvert.data.dmri.utils import (
    UNIT_MAGNITUDE_TOLERANCE,
    format_bvecs,
    max_bvalue,
    to_identity_frame,
    to_single_bvalue_scaled,
    to_unit_scaled,
    validate_frame,
)
from dwiconvert.exceptions import GradientCountError

GRADIENT_COUNT_MISMATCH_ERROR_MSG = """\
Mismatch between count of b-vectors ({n_bvecs}) and b-values ({n_bvals})."""
"""b-vector vs. b-value count mismatch error message."""

GRADIENT_VOLUME_COUNT_MISMATCH_ERROR_MSG = """\
Number of gradients does not match the number of volumes: \
{n_gradients} != {n_volumes}."""
"""Gradient count vs. volume count mismatch error message."""

GRADIENT_NONFINITE_ERROR_MSG = "Gradient table contains NaN or infinite values."
"""Gradient table non-finite values error message."""

BVALUE_NEGATIVE_ERROR_MSG = "b-values must be non-negative."
"""Negative b-value error message."""

UNWRAPPED_VOLUME_NDIM_ERROR_MSG = "DWI 'volume' must be an unwrapped (3D) volume."
"""DWI volume dimensionality error message."""


def _as_bvals(value: npt.ArrayLike) -> np.ndarray:
    return np.atleast_1d(np.array(value, dtype=float)).ravel()


def _as_bvecs(value: npt.ArrayLike) -> np.ndarray:
    # A 3x3 table is taken as already row-major
    return np.array(format_bvecs(value, horizontal_by_3_rows=False), dtype=float)


def validate_bvals(inst: GradientTable, attr: attrs.Attribute, value: np.ndarray) -> None:
    """Strict validator for b-values.

    Examples
    --------
    >>> validate_bvals(None, None, np.array([0.0, -5.0]))
    Traceback (most recent call last):
    ...
    ValueError: b-values must be non-negative.

    """
    if not np.all(np.isfinite(value)):
        raise ValueError(GRADIENT_NONFINITE_ERROR_MSG)

    if np.any(value < 0):
        raise ValueError(BVALUE_NEGATIVE_ERROR_MSG)


def validate_bvecs(inst: GradientTable, attr: attrs.Attribute, value: np.ndarray) -> None:
    """Strict validator for b-vectors, which must pair one-to-one with the b-values."""
    if not np.all(np.isfinite(value)):
        raise ValueError(GRADIENT_NONFINITE_ERROR_MSG)

    if value.shape[0] != inst.bvals.shape[0]:
        raise GradientCountError(
            GRADIENT_COUNT_MISMATCH_ERROR_MSG.format(
                n_bvecs=value.shape[0], n_bvals=inst.bvals.shape[0]
            )
        )


@attrs.frozen(eq=False)
class GradientTable:
    """
    The per-volume diffusion encoding of an acquisition.

    Entry ``i`` (a b-value and a b-vector) corresponds to the ``i``-th
    diffusion-encoded volume.
    Tables are immutable: every transformation returns a new table.

    Examples
    --------
    >>> table = GradientTable([0, 1000], [[0, 0, 0], [1, 0, 0]])
    >>> len(table), table.max_bvalue
    (2, 1000.0)
    >>> GradientTable([0, 1000], [[1, 0, 0]])
    Traceback (most recent call last):
    ...
    dwiconvert.exceptions.GradientCountError: Mismatch between count of b-vectors (1) ...

    """

    bvals: np.ndarray = attrs.field(converter=_as_bvals, repr=_data_repr, validator=validate_bvals)
    """The ``N`` b-values (s/mm²)."""
    bvecs: np.ndarray = attrs.field(converter=_as_bvecs, repr=_data_repr, validator=validate_bvecs)
    """The ``(N, 3)`` b-vectors."""

    def __len__(self) -> int:
        return self.bvals.shape[0]

    def __eq__(self, other: object) -> bool:
        if type(self) is not type(other):
            return NotImplemented

        assert isinstance(other, GradientTable)
        return _cmp(self.bvals, other.bvals) and _cmp(self.bvecs, other.bvecs)

    def __getitem__(self, idx: int | slice | np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Return the b-value(s) and b-vector(s) of one or more acquisitions."""
        return self.bvals[idx], self.bvecs[idx]

    @property
    def max_bvalue(self) -> float:
        """The nominal b-value."""
        return max_bvalue(self.bvals)

    def to_single_bvalue_scaled(self) -> GradientTable:
        """Return a table with one nominal b-value and magnitude-scaled b-vectors."""
        return GradientTable(*to_single_bvalue_scaled(self.bvals, self.bvecs))

    def to_unit_scaled(self, tolerance: float = UNIT_MAGNITUDE_TOLERANCE) -> GradientTable:
        """Return a table with unit b-vectors and per-volume b-values."""
        return GradientTable(*to_unit_scaled(self.bvals, self.bvecs, tolerance=tolerance))

    def rotate(self, rotation: npt.ArrayLike) -> GradientTable:
        """Return a table whose b-vectors are premultiplied by ``rotation``."""
        rotation = validate_frame(rotation)
        return GradientTable(self.bvals.copy(), (rotation @ self.bvecs.T).T)


@runtime_checkable
class AcquisitionSource(Protocol):
    """
    Capability interface of the objects able to produce a conversion session.

    Scanner-specific readers (e.g., one per DICOM vendor) implement these three
    operations; :meth:`DWI.from_source` only depends on this interface.

    """

    def load_volume(self) -> tuple[Volume, int]:
        """Return the unwrapped 3D volume and its number of diffusion-encoded volumes."""
        ...  # pragma: no cover - structural protocol

    def extract_gradients(self) -> tuple[GradientTable, np.ndarray]:
        """Return the gradient table and its 3x3 measurement frame."""
        ...  # pragma: no cover - structural protocol

    def describe_acquisition(self) -> dict[str, str]:
        """Return the acquisition fields to pass through into the output headers."""
        ...  # pragma: no cover - structural protocol


def _validate_volume(inst: DWI, attr: attrs.Attribute, value: Volume) -> None:
    if not isinstance(value, Volume) or value.ndim != 3:
        raise ValueError(UNWRAPPED_VOLUME_NDIM_ERROR_MSG)


def _validate_gradients(inst: DWI, attr: attrs.Attribute, value: Any) -> None:
    if not isinstance(value, GradientTable):
        raise TypeError(f"DWI 'gradients' must be a GradientTable, got {type(value)}.")


@attrs.define(slots=True, eq=False)
class DWI:
    """
    A diffusion-weighted conversion session.

    Holds the unwrapped volume, the gradient table, the measurement frame and
    the pass-through acquisition fields.
    Every transformation returns a new session; the original is never modified.

    """

    volume: Volume = attrs.field(validator=_validate_volume)
    """The unwrapped 3D volume (slices of all diffusion-encoded volumes concatenated)."""
    n_volumes: int = attrs.field(converter=int)
    """Number of diffusion-encoded volumes."""
    gradients: GradientTable = attrs.field(validator=_validate_gradients)
    """The gradient table, one entry per volume."""
    measurement_frame: np.ndarray = attrs.field(
        factory=lambda: np.eye(3), converter=validate_frame, eq=attrs.cmp_using(eq=_cmp)
    )
    """Rotation between the gradient coordinates and the patient (LPS) frame."""
    dicom_fields: dict[str, str] = attrs.field(factory=dict)
    """Acquisition fields written verbatim into NRRD headers (insertion ordered)."""

    def __attrs_post_init__(self) -> None:
        if len(self.gradients) != self.n_volumes:
            raise GradientCountError(
                GRADIENT_VOLUME_COUNT_MISMATCH_ERROR_MSG.format(
                    n_gradients=len(self.gradients), n_volumes=self.n_volumes
                )
            )

        check_divisible(self.volume.shape[2], self.n_volumes)

    def __len__(self) -> int:
        """Obtain the number of diffusion-encoded volumes."""
        return self.n_volumes

    def __eq__(self, other: object) -> bool:
        if type(self) is not type(other):
            return NotImplemented

        assert isinstance(other, DWI)
        return (
            self.volume == other.volume
            and self.n_volumes == other.n_volumes
            and self.gradients == other.gradients
            and _cmp(self.measurement_frame, other.measurement_frame)
            and self.dicom_fields == other.dicom_fields
        )

    @classmethod
    def from_source(cls, source: AcquisitionSource) -> Self:
        """
        Create a session from an acquisition source.

        Parameters
        ----------
        source : :obj:`~dwiconvert.data.dmri.base.AcquisitionSource`
            An object implementing the acquisition capability interface.

        Returns
        -------
        :obj:`~dwiconvert.data.dmri.base.DWI`
            The new session.

        """
        volume, n_volumes = source.load_volume()
        gradients, frame = source.extract_gradients()
        return cls(
            volume=volume,
            n_volumes=n_volumes,
            gradients=gradients,
            measurement_frame=frame,
            dicom_fields=dict(source.describe_acquisition()),
        )

    @property
    def slices_per_volume(self) -> int:
        return self.volume.shape[2] // self.n_volumes

    @property
    def bvals(self) -> np.ndarray:
        return self.gradients.bvals

    @property
    def bvecs(self) -> np.ndarray:
        return self.gradients.bvecs

    @property
    def max_bvalue(self) -> float:
        return self.gradients.max_bvalue

    @property
    def nrrd_space_directions(self) -> np.ndarray:
        """Direction cosines scaled by the voxel spacing (one column per spatial axis)."""
        return self.volume.direction @ np.diag(self.volume.spacing)

    def to_single_bvalue_scaled(self) -> Self:
        """Return a session whose gradients follow the NRRD (single b-value) convention."""
        return attrs.evolve(self, gradients=self.gradients.to_single_bvalue_scaled())

    def to_unit_scaled(self, tolerance: float = UNIT_MAGNITUDE_TOLERANCE) -> Self:
        """Return a session whose gradients follow the FSL (unit b-vector) convention."""
        return attrs.evolve(self, gradients=self.gradients.to_unit_scaled(tolerance=tolerance))

    def to_identity_frame(self) -> Self:
        """Return a session whose b-vectors are expressed in the patient frame."""
        bvecs, frame = to_identity_frame(self.gradients.bvecs, self.measurement_frame)
        return attrs.evolve(
            self,
            gradients=GradientTable(self.gradients.bvals.copy(), bvecs),
            measurement_frame=frame,
        )

    def with_gradients_from_files(
        self,
        bval_file: Path | str | None = None,
        bvec_file: Path | str | None = None,
        template: Path | str | None = None,
        horizontal_by_3_rows: bool = True,
    ) -> Self:
        """
        Return a session whose gradient table is read from FSL sidecar files.

        See :func:`~dwiconvert.data.dmri.io.load_gradients`.

        """
        from dwiconvert.data.dmri.io import load_gradients

        gradients = load_gradients(
            bval_file,
            bvec_file,
            template=template,
            n_volumes=self.n_volumes,
            horizontal_by_3_rows=horizontal_by_3_rows,
        )
        return attrs.evolve(self, gradients=gradients)

    def to_four_d(self) -> Volume:
        """Reshape the unwrapped volume into a 4D volume (one frame per gradient)."""
        return to_four_d(self.volume, self.n_volumes)

    def to_nrrd(
        self,
        filename: Path | str,
        comment: str = "",
    ) -> Path:
        """
        Write the session as NRRD (``.nrrd``, or ``.nhdr`` + ``.raw``).

        See :func:`~dwiconvert.data.dmri.nrrd.to_nrrd`.

        """
        from dwiconvert.data.dmri.nrrd import to_nrrd

        return to_nrrd(self, filename, comment=comment)

    def to_fsl(
        self,
        filename: Path | str,
        bval_file: Path | str | None = None,
        bvec_file: Path | str | None = None,
        horizontal_by_3_rows: bool = True,
        fsl_convention: bool = False,
    ) -> nb.Nifti1Image:
        """
        Write the session as an FSL file set (NIfTI, ``.bval`` and ``.bvec``).

        See :func:`~dwiconvert.data.dmri.io.to_fsl`.

        """
        from dwiconvert.data.dmri.io import to_fsl

        return to_fsl(
            self,
            filename,
            bval_file=bval_file,
            bvec_file=bvec_file,
            horizontal_by_3_rows=horizontal_by_3_rows,
            fsl_convention=fsl_convention,
        )
