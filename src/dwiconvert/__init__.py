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
Diffusion-weighted MRI conversion
---------------------------------
*dwiconvert* takes an *unwrapped* diffusion acquisition (a single 3D volume whose
slice axis concatenates the slices of every diffusion-encoded volume), its b-values
and gradient directions, and writes them out as NRRD (single-file or header + raw
sidecar) or as an FSL file set (4D NIfTI + ``.bval`` + ``.bvec``).

"""

__version__ = "0.1.0"
__packagename__ = "dwiconvert"

__all__ = ["__packagename__", "__version__"]
