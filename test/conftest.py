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
"""py.test configuration."""

import os
from pathlib import Path

import nibabel as nb
import numpy as np
import pytest

from dwiconvert.data.base import Volume
from dwiconvert.data.dmri import DWI, GradientTable

test_output_dir = os.getenv("TEST_OUTPUT_DIR")


def pytest_report_header(config):
    return f"""\
TEST_OUTPUT_DIR={test_output_dir or "<unset> (output files will be discarded)"}.
"""


@pytest.fixture(autouse=True)
def doctest_imports(doctest_namespace):
    """Populates doctests with some conveniency imports."""
    doctest_namespace["np"] = np
    doctest_namespace["nb"] = nb
    doctest_namespace["os"] = os
    doctest_namespace["Path"] = Path


@pytest.fixture(scope="session")
def outdir():
    """Determine if test artifacts should be stored somewhere or deleted."""
    return None if test_output_dir is None else Path(test_output_dir)


def pytest_addoption(parser):
    parser.addoption(
        "--warnings-as-errors",
        action="store_true",
        help="Consider all uncaught warnings as errors.",
    )


def make_volume(shape=(2, 2, 2), spacing=(1.0, 1.0, 1.0), origin=(0.0, 0.0, 0.0), direction=None):
    """Build an unwrapped volume whose samples enumerate the linear (Fortran) order."""
    size = int(np.prod(shape))
    dataobj = np.arange(size, dtype="int16").reshape(shape, order="F")
    return Volume(
        dataobj=dataobj,
        spacing=spacing,
        origin=origin,
        direction=np.eye(3) if direction is None else direction,
    )


@pytest.fixture
def volume_factory():
    """Return the unwrapped volume factory."""
    return make_volume


@pytest.fixture
def small_dwi():
    """A 2x2x2 unwrapped volume holding two diffusion-encoded volumes (one slice each)."""
    return DWI(
        volume=make_volume((2, 2, 2)),
        n_volumes=2,
        gradients=GradientTable([0, 1000], [[0, 0, 0], [1, 0, 0]]),
    )


@pytest.fixture
def multishell_dwi():
    """Four volumes of 4x3x2 voxels, with b-values 0, 500, 1000 and 1000."""
    rng = np.random.default_rng(1234)
    dataobj = np.asfortranarray(rng.integers(-500, 3000, size=(4, 3, 8)).astype("int16"))
    return DWI(
        volume=Volume(
            dataobj=dataobj,
            spacing=(2.0, 2.0, 2.5),
            origin=(-10.0, 12.0, -4.0),
            direction=np.eye(3),
        ),
        n_volumes=4,
        gradients=GradientTable(
            [0, 500, 1000, 1000],
            [[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]],
        ),
    )


@pytest.hookimpl(trylast=True)
def pytest_sessionfinish(session, exitstatus):
    have_werrors = os.getenv("DWICONVERT_WERRORS", False)
    have_werrors = session.config.getoption("--warnings-as-errors", False) or have_werrors
    if have_werrors:
        # Check if there were any warnings during the test session
        reporter = session.config.pluginmanager.get_plugin("terminalreporter")
        if reporter.stats.get("warnings", None):
            session.exitstatus = 2
