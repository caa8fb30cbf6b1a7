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
r"""
dMRI data representation
------------------------
This submodule implements the conversion session of diffusion MRI data and its
NRRD and FSL serializers.
Please, beware that *dwiconvert* keeps the gradient table exactly as provided
until it is explicitly normalized.

**Gradient Table Representation**.
A :class:`~dwiconvert.data.dmri.base.GradientTable` stores ``N`` b-values and ``N``
b-vectors, one per diffusion-encoded volume and in acquisition order.
The two output formats disagree on how the diffusion weighting is encoded:

* NRRD stores a single, nominal b-value (the largest one) and scales every
  b-vector by :math:`\sqrt{b_i / b_{max}}`
  (:meth:`~dwiconvert.data.dmri.base.DWI.to_single_bvalue_scaled`).
* FSL stores unit b-vectors and one b-value per volume
  (:meth:`~dwiconvert.data.dmri.base.DWI.to_unit_scaled`).

**Measurement Frame**.
NRRD headers record the rotation between gradient coordinates and the patient
(LPS) frame.
FSL has no such field, and refuses to write unless the b-vectors have been rotated
into the patient frame first
(:meth:`~dwiconvert.data.dmri.base.DWI.to_identity_frame`).

**Data Representation**.
The session holds an *unwrapped* 3D volume: the slices of every diffusion-encoded
volume are concatenated along the third axis.
The number of slices must therefore be a multiple of the number of gradients.

"""

from dwiconvert.data.dmri.base import DWI, AcquisitionSource, GradientTable
from dwiconvert.data.dmri.io import NiftiSource, from_nii, load_gradients

__all__ = [
    "DWI",
    "AcquisitionSource",
    "GradientTable",
    "NiftiSource",
    "from_nii",
    "load_gradients",
]
