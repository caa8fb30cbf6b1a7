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
NRRD serialization of diffusion-weighted sessions.

The header follows the `NRRD0005 <http://teem.sourceforge.net/nrrd/format.html>`__ format
with the ``DWMRI`` key/value conventions: a single nominal
b-value (``DWMRI_b-value``) and one, possibly scaled, gradient direction per
volume (``DWMRI_gradient_NNNN``).
Samples are stored as raw, little-endian 16-bit integers, either appended to the
header (``.nrrd``) or in a ``.raw`` file next to a detached header (``.nhdr``).

"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from dwiconvert import __version__
from dwiconvert.data.dmri.base import DWI
from dwiconvert.data.dmri.utils import DEFAULT_SMALL_GRADIENT_THRESHOLD
from dwiconvert.utils.formatting import format_double, format_vector

LOGGER = logging.getLogger(__name__)

NRRD_MAGIC = "NRRD0005"
"""Format version token."""

NRRD_SPACE = "left-posterior-superior"
"""World space of every header written by this module."""

NRRD_SPLIT_EXTENSION = ".nhdr"
"""Header extension selecting the detached header + raw data mode."""

NRRD_RAW_EXTENSION = ".raw"
"""Extension of the raw sidecar in detached mode."""

SMALL_GRADIENT_THRESHOLD_ATOL = 1e-4
"""Deviation from the default small-gradient threshold that gets recorded in the comment."""


def make_file_comment(
    conversion_mode: str,
    version: str = __version__,
    use_bmatrix_gradient_directions: bool = False,
    use_identity_measurement_frame: bool = False,
    small_gradient_threshold: float = DEFAULT_SMALL_GRADIENT_THRESHOLD,
) -> str:
    """
    Build the comment block echoing the conversion parameters.

    Only options departing from their defaults are recorded.

    Examples
    --------
    >>> print(make_file_comment("FSLToNrrd", version="1.0", use_identity_measurement_frame=True))
    #
    #
    # This file was created by dwiconvert version 1.0
    # part of the dwiconvert package.
    # Command line options:
    # --conversionMode FSLToNrrd
    # --useIdentityMeasurementFrame
    <BLANKLINE>

    """
    lines = [
        "#",
        "#",
        f"# This file was created by dwiconvert version {version}",
        "# part of the dwiconvert package.",
        "# Command line options:",
        f"# --conversionMode {conversion_mode}",
    ]
    deviation = abs(small_gradient_threshold - DEFAULT_SMALL_GRADIENT_THRESHOLD)
    if deviation > SMALL_GRADIENT_THRESHOLD_ATOL:
        lines.append(f"# --smallGradientThreshold {small_gradient_threshold:g}")
    if use_identity_measurement_frame:
        lines.append("# --useIdentityMeasurementFrame")
    if use_bmatrix_gradient_directions:
        lines.append("# --useBMatrixGradientDirections")
    return "\n".join(lines) + "\n"


def _columns(matrix: np.ndarray) -> str:
    return " ".join(f"({format_vector(column)})" for column in np.asarray(matrix).T)


def is_split_filename(filename: Path | str) -> bool:
    """
    Whether ``filename`` selects the detached header + raw data mode.

    Examples
    --------
    >>> is_split_filename("dwi.nhdr"), is_split_filename("dwi.nrrd")
    (True, False)

    """
    return NRRD_SPLIT_EXTENSION in Path(filename).name


def raw_filename(filename: Path | str) -> Path:
    """
    Derive the raw sidecar filename of a detached header.

    Examples
    --------
    >>> raw_filename("/data/dwi.nhdr").as_posix()
    '/data/dwi.raw'

    """
    filename = Path(filename)
    stem = filename.name[: filename.name.find(NRRD_SPLIT_EXTENSION)]
    return filename.with_name(f"{stem}{NRRD_RAW_EXTENSION}")


def nrrd_header(dwi: DWI, data_file: str | None = None, comment: str = "") -> str:
    """
    Render the NRRD header of a session.

    Parameters
    ----------
    dwi : :obj:`~dwiconvert.data.dmri.base.DWI`
        The session. Its gradients are expected to be normalized to a single
        b-value (see :meth:`~dwiconvert.data.dmri.base.DWI.to_single_bvalue_scaled`);
        the largest b-value is written as the nominal one.
    data_file : :obj:`str`, optional
        Name of the raw sidecar in detached mode; :obj:`None` for a single file.
    comment : :obj:`str`, optional
        Comment block inserted after the magic line (see :func:`make_file_comment`).

    Returns
    -------
    :obj:`str`
        The header, including the empty line closing it.

    """
    volume = dwi.volume
    size_x, size_y, _ = volume.shape

    lines = [NRRD_MAGIC]
    if comment:
        lines.extend(comment.rstrip("\n").split("\n"))

    if data_file is not None:
        lines.append(f"content: exists({data_file},0)")

    lines += [
        "type: short",
        "dimension: 4",
        f"space: {NRRD_SPACE}",
        f"sizes: {size_x} {size_y} {dwi.slices_per_volume} {dwi.n_volumes}",
        f"thicknesses:  NaN  NaN {format_double(volume.spacing[2])} NaN",
        f"space directions: {_columns(dwi.nrrd_space_directions)} none",
        "centerings: cell cell cell ???",
        "kinds: space space space list",
        "endian: little",
        "encoding: raw",
        'space units: "mm" "mm" "mm"',
        f"space origin: ({format_vector(volume.origin)})",
    ]

    if data_file is not None:
        lines.append(f"data file: {data_file}")

    lines.append(f"measurement frame: {_columns(dwi.measurement_frame)}")
    lines.extend(f"{key}:={value}" for key, value in dwi.dicom_fields.items())
    lines += [
        "modality:=DWMRI",
        f"DWMRI_b-value:={format_double(dwi.max_bvalue)}",
    ]
    lines.extend(
        f"DWMRI_gradient_{index:04d}:={format_vector(bvec, sep='   ')}"
        for index, bvec in enumerate(dwi.bvecs)
    )

    # An empty line separates the header from the data
    return "\n".join(lines) + "\n\n"


def to_nrrd(dwi: DWI, filename: Path | str, comment: str = "") -> Path:
    """
    Write a session as NRRD.

    A ``.nhdr`` extension in ``filename`` selects the detached mode: the samples
    go to a ``.raw`` sidecar, which is written before the header so that a failed
    data write never leaves a complete-looking header behind (a partially
    written sidecar may remain).
    Otherwise the samples are appended to the header in a single file.

    Parameters
    ----------
    dwi : :obj:`~dwiconvert.data.dmri.base.DWI`
        The session to write.
    filename : :obj:`os.pathlike`
        The output header path.
    comment : :obj:`str`, optional
        Comment block echoing the conversion parameters.

    Returns
    -------
    :obj:`~pathlib.Path`
        The path of the header written.

    Raises
    ------
    :exc:`OSError`
        If the header or the sidecar cannot be written.

    """
    filename = Path(filename)

    if is_split_filename(filename):
        data_path = raw_filename(filename)
        header = nrrd_header(dwi, data_file=data_path.name, comment=comment)
        with open(data_path, "wb") as fobj:
            fobj.write(dwi.volume.tobytes())
        LOGGER.info("Wrote raw data %s", data_path)

        with open(filename, "wb") as fobj:
            fobj.write(header.encode("utf-8"))
    else:
        header = nrrd_header(dwi, comment=comment)
        with open(filename, "wb") as fobj:
            fobj.write(header.encode("utf-8"))
            fobj.write(dwi.volume.tobytes())

    LOGGER.info("Wrote NRRD header %s", filename)
    return filename
