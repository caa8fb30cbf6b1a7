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
"""dwiconvert runner."""

import logging
from pathlib import Path

from dwiconvert.cli.parser import build_parser
from dwiconvert.data.dmri import DWI, from_nii
from dwiconvert.data.dmri.io import nifti_stem
from dwiconvert.data.dmri.nrrd import make_file_comment
from dwiconvert.exceptions import ConfigurationError, DWIConvertError

LOGGER = logging.getLogger("dwiconvert")

NRRD_EXTENSIONS = (".nrrd", ".nhdr")
"""Output extensions selecting the NRRD serializer."""

UNKNOWN_OUTPUT_ERROR_MSG = """\
Output volume '{filename}' has no recognized extension \
(expected .nrrd, .nhdr, .nii or .nii.gz)."""
"""Unrecognized output format error message."""

CONFLICTING_OUTPUT_ERROR_MSG = """\
FSL-only options ({options}) were requested, but the output volume \
'{filename}' selects the NRRD format."""
"""Conflicting output format selection error message."""


def output_format(filename: Path) -> str:
    """
    Select the output format from the extension of ``filename``.

    Examples
    --------
    >>> output_format(Path("dwi.nhdr")), output_format(Path("dwi.nii.gz"))
    ('nrrd', 'fsl')

    """
    if filename.suffix in NRRD_EXTENSIONS:
        return "nrrd"
    if nifti_stem(filename) is not None:
        return "fsl"
    raise ConfigurationError(UNKNOWN_OUTPUT_ERROR_MSG.format(filename=filename))


def convert(args) -> Path:
    """Run one conversion as configured by the parsed command-line ``args``."""
    fmt = output_format(args.output_volume)

    requested = (
        ("--output-bval", args.output_bval),
        ("--output-bvec", args.output_bvec),
        ("--fsl-convention", args.fsl_convention),
    )
    if fmt == "nrrd" and any(value for _, value in requested):
        options = ", ".join(opt for opt, value in requested if value)
        raise ConfigurationError(
            CONFLICTING_OUTPUT_ERROR_MSG.format(options=options, filename=args.output_volume)
        )

    dwi: DWI = from_nii(
        args.input_volume,
        bval_file=args.input_bval,
        bvec_file=args.input_bvec,
        horizontal_by_3_rows=not args.vertical_bvecs,
        allow_lossy_conversion=args.allow_lossy_conversion,
        dicom_fields=args.dicom_fields,
    )

    if fmt == "nrrd":
        if args.use_identity_measurement_frame:
            dwi = dwi.to_identity_frame()

        comment = make_file_comment(
            "FSLToNrrd",
            use_identity_measurement_frame=args.use_identity_measurement_frame,
        )
        return dwi.to_single_bvalue_scaled().to_nrrd(args.output_volume, comment=comment)

    dwi = dwi.to_identity_frame().to_unit_scaled()
    dwi.to_fsl(
        args.output_volume,
        bval_file=args.output_bval,
        bvec_file=args.output_bvec,
        horizontal_by_3_rows=not args.vertical_bvecs,
        fsl_convention=args.fsl_convention,
    )
    return args.output_volume


def main(argv=None) -> None:
    """
    Entry point.

    Returns
    -------
    None

    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=max(logging.WARNING - 10 * args.verbose_count, logging.DEBUG),
        format="%(asctime)s | %(name)s | %(levelname)s: %(message)s",
    )

    try:
        convert(args)
    except DWIConvertError as exc:
        LOGGER.error("%s error: %s", exc.kind.value, exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
