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
"""Parser module."""

from argparse import ArgumentDefaultsHelpFormatter, ArgumentParser, ArgumentTypeError
from pathlib import Path

import yaml

from dwiconvert import __version__


def _parse_yaml_fields(file_path: str) -> dict:
    """
    Parse a YAML file mapping acquisition field names to values.

    Parameters
    ----------
    file_path : str
        Path to the YAML file.

    Returns
    -------
    dict
        A dictionary of field names to string values, in file order.
    """
    with open(file_path, "r") as file:
        fields = yaml.safe_load(file) or {}

    if not isinstance(fields, dict):
        raise ArgumentTypeError(f"{file_path} does not contain a mapping of fields.")

    return {str(key): str(value) for key, value in fields.items()}


def build_parser() -> ArgumentParser:
    """
    Build parser object.

    Returns
    -------
    :obj:`~argparse.ArgumentParser`
        The parser object defining the interface for the command-line.
    """
    parser = ArgumentParser(
        description=(
            "Convert a diffusion-weighted FSL file set into NRRD (.nrrd, .nhdr) or "
            "back into FSL (.nii, .nii.gz), as selected by the output extension."
        ),
        formatter_class=ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"dwiconvert {__version__}")

    parser.add_argument(
        "input_volume",
        action="store",
        type=Path,
        help="Path to the 4D NIfTI file containing the diffusion-weighted data.",
    )
    parser.add_argument(
        "output_volume",
        action="store",
        type=Path,
        help="Path to the output file (.nrrd, .nhdr, .nii or .nii.gz).",
    )

    g_input = parser.add_argument_group("Options for the input gradients")
    g_input.add_argument(
        "--input-bval",
        action="store",
        type=Path,
        metavar="FILE",
        help="The b-values file (defaults to the input volume with a .bval extension).",
    )
    g_input.add_argument(
        "--input-bvec",
        action="store",
        type=Path,
        metavar="FILE",
        help="The b-vectors file (defaults to the input volume with a .bvec extension).",
    )
    g_input.add_argument(
        "--allow-lossy-conversion",
        action="store_true",
        help="Round samples not stored as 16-bit integers into 16-bit integers.",
    )
    g_input.add_argument(
        "--dicom-fields",
        action="store",
        type=_parse_yaml_fields,
        default=None,
        metavar="FILE",
        help="YAML file with acquisition fields to copy into NRRD headers.",
    )

    g_nrrd = parser.add_argument_group("Options for NRRD outputs")
    g_nrrd.add_argument(
        "--use-identity-measurement-frame",
        action="store_true",
        help="Rotate the b-vectors into the patient frame before writing.",
    )

    g_fsl = parser.add_argument_group("Options for FSL outputs")
    g_fsl.add_argument(
        "--output-bval",
        action="store",
        type=Path,
        metavar="FILE",
        help="The output b-values file (defaults to the output volume with a .bval extension).",
    )
    g_fsl.add_argument(
        "--output-bvec",
        action="store",
        type=Path,
        metavar="FILE",
        help="The output b-vectors file (defaults to the output volume with a .bvec extension).",
    )
    g_fsl.add_argument(
        "--vertical-bvecs",
        action="store_true",
        help="Read and write b-vectors as N rows x 3 columns instead of 3 rows x N columns.",
    )
    g_fsl.add_argument(
        "--fsl-convention",
        action="store_true",
        help="Reorder the samples to the FSL data layout (second axis reversed).",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        dest="verbose_count",
        action="count",
        default=0,
        help="Increases log verbosity for each occurrence.",
    )

    return parser
