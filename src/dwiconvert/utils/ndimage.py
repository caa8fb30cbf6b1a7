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

import os
import typing

import nibabel as nb
import numpy as np

ImgT = typing.TypeVar("ImgT", bound=nb.spatialimages.SpatialImage)

LPS_TO_RAS = np.diag([-1.0, -1.0, 1.0])
"""Flip between the LPS (DICOM/NRRD) and RAS (NIfTI) world conventions (self-inverse)."""


def load_api(path: str | os.PathLike[str], api: type[ImgT]) -> ImgT:
    img = nb.load(path)
    if not isinstance(img, api):
        raise TypeError(f"File {path} does not implement {api} interface")
    return img


def get_data(img: ImgT, dtype: np.dtype | str | None = None) -> np.ndarray:
    """Get the data from a nibabel image."""

    # Check if dtype is set and if it is a float type
    is_float = dtype is not None and np.issubdtype(np.dtype(dtype), np.floating)

    header = img.header

    def _no_slope_inter():
        return (None, None)

    if not is_float and getattr(header, "get_slope_inter", _no_slope_inter)() in (
        (None, None),
        (1.0, 0.0),
    ):
        return np.asanyarray(img.dataobj, dtype=header.get_data_dtype())

    return img.get_fdata(dtype=dtype if is_float else np.float32)


def lps_to_affine(
    direction: np.ndarray, spacing: np.ndarray, origin: np.ndarray
) -> np.ndarray:
    """
    Build a RAS voxel-to-world affine from LPS direction cosines, spacing and origin.

    Parameters
    ----------
    direction : :obj:`~numpy.ndarray`
        A 3x3 matrix whose columns are the direction cosines of the voxel axes (LPS).
    spacing : :obj:`~numpy.ndarray`
        Voxel size along each of the three spatial axes.
    origin : :obj:`~numpy.ndarray`
        LPS coordinates of the center of the first voxel.

    Returns
    -------
    :obj:`~numpy.ndarray`
        The 4x4 affine in RAS convention, as stored by NIfTI.

    Examples
    --------
    >>> affine = lps_to_affine(np.eye(3), np.array([2.0, 2.0, 3.0]), np.array([10.0, 20.0, 30.0]))
    >>> np.diag(affine).tolist()
    [-2.0, -2.0, 3.0, 1.0]
    >>> affine[:3, 3].tolist()
    [-10.0, -20.0, 30.0]

    """
    affine = np.eye(4)
    affine[:3, :3] = LPS_TO_RAS @ np.asarray(direction, dtype=float) @ np.diag(spacing)
    affine[:3, 3] = LPS_TO_RAS @ np.asarray(origin, dtype=float)
    return affine


def affine_to_lps(affine: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Decompose a RAS affine into LPS direction cosines, spacing and origin.

    This is the inverse of :func:`lps_to_affine`.

    Examples
    --------
    >>> direction, spacing, origin = affine_to_lps(np.diag([-2.0, -2.0, 3.0, 1.0]))
    >>> bool(np.allclose(direction, np.eye(3)))
    True
    >>> spacing.tolist()
    [2.0, 2.0, 3.0]

    """
    affine = np.asarray(affine, dtype=float)
    scaled = LPS_TO_RAS @ affine[:3, :3]
    spacing = np.linalg.norm(scaled, axis=0)
    direction = scaled / spacing[np.newaxis, :]
    origin = LPS_TO_RAS @ affine[:3, 3]
    return direction, spacing, origin
