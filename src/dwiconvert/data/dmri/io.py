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
"""Input/Output utilities for the FSL file set (NIfTI, b-vals & b-vecs)."""

from __future__ import annotations

import logging
from pathlib import Path
from warnings import warn

import attrs
import nibabel as nb
import numpy as np
import numpy.typing as npt

from dwiconvert.data.base import (
    SAMPLE_DTYPE,
    SCANNER_ANAT_XFORM,
    Volume,
    to_convention,
    to_three_d,
)
from dwiconvert.data.dmri.base import DWI, GradientTable
from dwiconvert.data.dmri.utils import format_bvecs, is_identity_frame
from dwiconvert.exceptions import ConfigurationError, GradientCountError, MeasurementFrameError
from dwiconvert.utils.formatting import format_vector
from dwiconvert.utils.ndimage import affine_to_lps, get_data, load_api, lps_to_affine

LOGGER = logging.getLogger(__name__)

NIFTI_EXTENSIONS = (".nii.gz", ".nii")
"""Volume file extensions accepted for the FSL file set."""

GRADIENT_TEMPLATE_MISSING_ERROR_MSG = """\
A volume filename template is required to derive the default {kind} file."""
"""Missing template for default sidecar paths error message."""

GRADIENT_FILE_COUNT_MISMATCH_ERROR_MSG = """\
Mismatch between count of b-vectors ({n_bvecs}) in '{bvec_file}' and \
b-values ({n_bvals}) in '{bval_file}'."""
"""b-vector vs. b-value file count mismatch error message."""

GRADIENT_FILE_VOLUME_MISMATCH_ERROR_MSG = """\
Number of gradients does not match the number of volumes: \
{n_gradients} != {n_volumes}."""
"""Sidecar gradient count vs. volume count mismatch error message."""

NIFTI_EXTENSION_ERROR_MSG = """\
FSL format output chosen, but output volume '{filename}' is not a recognized \
NIfTI filename (expected one of {extensions})."""
"""Unrecognized FSL volume extension error message."""

NON_IDENTITY_FRAME_ERROR_MSG = """\
Only an identity measurement frame is allowed for writing FSL formatted files \
(trace = {trace:.6f})."""
"""Non-identity measurement frame error message."""

LOSSY_CONVERSION_ERROR_MSG = """\
Samples of '{filename}' are stored as {dtype}; conversion to 16-bit integers \
is lossy and must be explicitly allowed."""
"""Lossy sample conversion error message."""

LOSSY_CONVERSION_WARN_MSG = "Samples of '{filename}' converted from {dtype} to 16-bit integers."
"""Lossy sample conversion warning message."""


def nifti_stem(filename: Path | str) -> Path | None:
    """
    Strip a recognized NIfTI extension from ``filename``.

    Returns
    -------
    :obj:`~pathlib.Path` or :obj:`None`
        The path without extension, or :obj:`None` if the extension is not recognized.

    Examples
    --------
    >>> nifti_stem("/data/dwi.nii.gz").as_posix()
    '/data/dwi'
    >>> nifti_stem("dwi.nrrd") is None
    True

    """
    filename = Path(filename)
    for ext in NIFTI_EXTENSIONS:
        if filename.name.endswith(ext):
            return filename.parent / filename.name[: -len(ext)]
    return None


def _sidecar_from_template(template: Path | str | None, suffix: str) -> Path:
    if not template:
        raise ConfigurationError(GRADIENT_TEMPLATE_MISSING_ERROR_MSG.format(kind=suffix))

    template = Path(template)
    out_root = nifti_stem(template)
    if out_root is None:
        # Names without a NIfTI extension only lose their last suffix
        sidecar = template.with_suffix(suffix)
    else:
        sidecar = out_root.with_name(f"{out_root.name}{suffix}")
    LOGGER.debug("From template %s, defaulting to: %s", template, sidecar)
    return sidecar


def read_bvals(filename: Path | str) -> np.ndarray:
    """Read a flat table of b-values."""
    return np.atleast_1d(np.loadtxt(filename, dtype=float)).ravel()


def read_bvecs(filename: Path | str, horizontal_by_3_rows: bool = True) -> np.ndarray:
    """Read a table of b-vectors, either 3 rows x N columns or N rows x 3 columns."""
    return format_bvecs(
        np.loadtxt(filename, dtype=float, ndmin=2),
        horizontal_by_3_rows=horizontal_by_3_rows,
    )


def load_gradients(
    bval_file: Path | str | None = None,
    bvec_file: Path | str | None = None,
    template: Path | str | None = None,
    n_volumes: int | None = None,
    horizontal_by_3_rows: bool = True,
) -> GradientTable:
    """
    Read a gradient table from an FSL b-values/b-vectors pair.

    Parameters
    ----------
    bval_file : :obj:`os.pathlike`, optional
        The b-values file. If empty, it is derived from ``template``.
    bvec_file : :obj:`os.pathlike`, optional
        The b-vectors file. If empty, it is derived from ``template``.
    template : :obj:`os.pathlike`, optional
        A volume filename; the default sidecars replace its NIfTI extension
        (``.nii`` or ``.nii.gz``, or else its last suffix) with ``.bval`` and
        ``.bvec`` in the same directory.
    n_volumes : :obj:`int`, optional
        The expected number of gradients.
    horizontal_by_3_rows : :obj:`bool`, optional
        How to resolve a 3x3 b-vector table (see
        :func:`~dwiconvert.data.dmri.utils.format_bvecs`).

    Returns
    -------
    :obj:`~dwiconvert.data.dmri.base.GradientTable`
        The gradient table.

    Raises
    ------
    :exc:`~dwiconvert.exceptions.GradientCountError`
        If the number of b-values and b-vectors differ, or if they do not
        match ``n_volumes``.

    """
    bval_file = Path(bval_file) if bval_file else _sidecar_from_template(template, ".bval")
    bvec_file = Path(bvec_file) if bvec_file else _sidecar_from_template(template, ".bvec")

    bvals = read_bvals(bval_file)
    bvecs = read_bvecs(bvec_file, horizontal_by_3_rows=horizontal_by_3_rows)

    if bvals.shape[0] != bvecs.shape[0]:
        raise GradientCountError(
            GRADIENT_FILE_COUNT_MISMATCH_ERROR_MSG.format(
                n_bvecs=bvecs.shape[0],
                bvec_file=bvec_file,
                n_bvals=bvals.shape[0],
                bval_file=bval_file,
            )
        )

    if n_volumes is not None and bvals.shape[0] != n_volumes:
        raise GradientCountError(
            GRADIENT_FILE_VOLUME_MISMATCH_ERROR_MSG.format(
                n_gradients=bvals.shape[0], n_volumes=n_volumes
            )
        )

    return GradientTable(bvals, bvecs)


def write_bvals(bvals: npt.ArrayLike, filename: Path | str) -> Path:
    """Write b-values as a single line of space-separated numbers."""
    filename = Path(filename)
    with open(filename, "w") as fobj:
        fobj.write(format_vector(np.ravel(bvals), sep=" ") + "\n")
    return filename


def write_bvecs(
    bvecs: npt.ArrayLike, filename: Path | str, horizontal_by_3_rows: bool = True
) -> Path:
    """Write b-vectors as 3 rows x N columns, or N rows x 3 columns."""
    filename = Path(filename)
    rows = np.asarray(bvecs, dtype=float).reshape((-1, 3))
    if horizontal_by_3_rows:
        rows = rows.T

    with open(filename, "w") as fobj:
        fobj.writelines(format_vector(row, sep=" ") + "\n" for row in rows)
    return filename


def to_fsl(
    dwi: DWI,
    filename: Path | str,
    bval_file: Path | str | None = None,
    bvec_file: Path | str | None = None,
    horizontal_by_3_rows: bool = True,
    fsl_convention: bool = False,
) -> nb.Nifti1Image:
    """
    Export a session to disk as an FSL file set (NIfTI, b-vecs, & b-vals files).

    The b-values and b-vectors are written as they are found in the session;
    normalize them first with :meth:`~dwiconvert.data.dmri.base.DWI.to_unit_scaled`.

    Parameters
    ----------
    dwi : :obj:`~dwiconvert.data.dmri.base.DWI`
        The session to export. Its measurement frame must be the identity.
    filename : :obj:`os.pathlike`
        The output NIfTI file path (``.nii`` or ``.nii.gz``).
    bval_file : :obj:`os.pathlike`, optional
        The output b-values file. Defaults to ``filename`` with a ``.bval`` extension.
    bvec_file : :obj:`os.pathlike`, optional
        The output b-vectors file. Defaults to ``filename`` with a ``.bvec`` extension.
    horizontal_by_3_rows : :obj:`bool`, optional
        Write b-vectors as 3 rows x N columns (``True``) or N rows x 3 columns.
    fsl_convention : :obj:`bool`, optional
        Reorder the samples to the FSL data layout before writing.

    Returns
    -------
    :obj:`~nibabel.nifti1.Nifti1Image`
        NIfTI image written to disk.

    Raises
    ------
    :exc:`~dwiconvert.exceptions.MeasurementFrameError`
        If the measurement frame is not the identity.
    :exc:`~dwiconvert.exceptions.ConfigurationError`
        If ``filename`` does not carry a NIfTI extension.

    """
    if not is_identity_frame(dwi.measurement_frame):
        raise MeasurementFrameError(
            NON_IDENTITY_FRAME_ERROR_MSG.format(trace=np.trace(dwi.measurement_frame))
        )

    out_root = nifti_stem(filename)
    if out_root is None:
        raise ConfigurationError(
            NIFTI_EXTENSION_ERROR_MSG.format(filename=filename, extensions=NIFTI_EXTENSIONS)
        )

    volume = dwi.to_four_d()
    if fsl_convention:
        volume = to_convention(volume, to_fsl=True)

    affine = lps_to_affine(volume.direction[:3, :3], volume.spacing[:3], volume.origin[:3])

    hdr = nb.Nifti1Header()
    hdr.set_xyzt_units("mm")
    hdr.set_data_dtype(volume.dataobj.dtype)
    nii = nb.Nifti1Image(volume.dataobj, affine, hdr)
    # Codes are given by their NIfTI names, which nibabel recodes
    nii.set_qform(affine, code=volume.metadata.get("qform_code_name", SCANNER_ANAT_XFORM))
    nii.set_sform(affine, code=volume.metadata.get("sform_code_name", SCANNER_ANAT_XFORM))
    nii.header.set_zooms(tuple(volume.spacing))

    nii.to_filename(filename)
    LOGGER.info("Wrote volume %s", filename)

    bval_file = bval_file or out_root.with_name(f"{out_root.name}.bval")
    bvec_file = bvec_file or out_root.with_name(f"{out_root.name}.bvec")
    write_bvals(dwi.bvals, bval_file)
    write_bvecs(dwi.bvecs, bvec_file, horizontal_by_3_rows=horizontal_by_3_rows)
    LOGGER.info("Wrote gradients %s, %s", bval_file, bvec_file)

    return nii


@attrs.define(slots=True)
class NiftiSource:
    """
    Acquisition source reading back an FSL file set (e.g., previously exported data).

    Implements :class:`~dwiconvert.data.dmri.base.AcquisitionSource`.

    """

    filename: Path = attrs.field(converter=Path)
    """The 4D NIfTI volume."""
    bval_file: Path | None = attrs.field(default=None)
    """The b-values file (derived from :attr:`filename` if unset)."""
    bvec_file: Path | None = attrs.field(default=None)
    """The b-vectors file (derived from :attr:`filename` if unset)."""
    horizontal_by_3_rows: bool = attrs.field(default=True)
    """How to resolve a 3x3 b-vector table."""
    allow_lossy_conversion: bool = attrs.field(default=False)
    """Allow rounding non-16-bit samples into 16-bit integers."""
    dicom_fields: dict[str, str] = attrs.field(factory=dict)
    """Acquisition fields to pass through."""

    def load_volume(self) -> tuple[Volume, int]:
        img = load_api(self.filename, nb.Nifti1Image)
        data = get_data(img)
        if data.ndim == 3:
            data = data[..., np.newaxis]

        if data.dtype != SAMPLE_DTYPE:
            if not self.allow_lossy_conversion:
                raise ConfigurationError(
                    LOSSY_CONVERSION_ERROR_MSG.format(filename=self.filename, dtype=data.dtype)
                )
            warn(
                LOSSY_CONVERSION_WARN_MSG.format(filename=self.filename, dtype=data.dtype),
                stacklevel=2,
            )
            info = np.iinfo(SAMPLE_DTYPE)
            data = np.clip(np.rint(data), info.min, info.max).astype(SAMPLE_DTYPE)

        direction, spacing, origin = affine_to_lps(img.affine)
        direction4d = np.eye(4)
        direction4d[:3, :3] = direction
        volume = Volume(
            dataobj=np.asfortranarray(data),
            spacing=np.append(spacing, 1.0),
            origin=np.append(origin, 0.0),
            direction=direction4d,
        )
        return to_three_d(volume), data.shape[-1]

    def extract_gradients(self) -> tuple[GradientTable, np.ndarray]:
        """Read the sidecars and encode the weighting in the b-vector magnitudes."""
        gradients = load_gradients(
            self.bval_file,
            self.bvec_file,
            template=self.filename,
            horizontal_by_3_rows=self.horizontal_by_3_rows,
        )
        return gradients.to_single_bvalue_scaled(), np.eye(3)

    def describe_acquisition(self) -> dict[str, str]:
        return dict(self.dicom_fields)


def from_nii(
    filename: Path | str,
    bval_file: Path | str | None = None,
    bvec_file: Path | str | None = None,
    horizontal_by_3_rows: bool = True,
    allow_lossy_conversion: bool = False,
    dicom_fields: dict[str, str] | None = None,
) -> DWI:
    """
    Load an FSL file set and construct a conversion session.

    The unit b-vectors of the FSL file set are scaled to the single b-value form
    (see :meth:`~dwiconvert.data.dmri.base.DWI.to_single_bvalue_scaled`), so that
    :meth:`~dwiconvert.data.dmri.base.DWI.to_unit_scaled` restores them.

    Parameters
    ----------
    filename : :obj:`os.pathlike`
        The main DWI data file (NIfTI).
    bval_file : :obj:`os.pathlike`, optional
        A text file containing b-values, shape (N,).
    bvec_file : :obj:`os.pathlike`, optional
        A text file containing b-vectors, shape (N, 3) or (3, N).
    horizontal_by_3_rows : :obj:`bool`, optional
        How to resolve a 3x3 b-vector table.
    allow_lossy_conversion : :obj:`bool`, optional
        Allow rounding non-16-bit samples into 16-bit integers.
    dicom_fields : :obj:`dict`, optional
        Acquisition fields to pass through into NRRD headers.

    Returns
    -------
    dwi : :obj:`~dwiconvert.data.dmri.base.DWI`
        The conversion session.

    Raises
    ------
    :exc:`~dwiconvert.exceptions.GradientCountError`
        If the gradient files disagree with each other or with the volume count.

    """
    return DWI.from_source(
        NiftiSource(
            filename,
            bval_file=Path(bval_file) if bval_file else None,
            bvec_file=Path(bvec_file) if bvec_file else None,
            horizontal_by_3_rows=horizontal_by_3_rows,
            allow_lossy_conversion=allow_lossy_conversion,
            dicom_fields=dict(dicom_fields or {}),
        )
    )
