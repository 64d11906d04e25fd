# Copyright 2023 Google LLC
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

import nox

DEFAULT_PYTHON_VERSION = "3.11"
UNIT_TEST_PYTHON_VERSIONS = ["3.9", "3.10", "3.11", "3.12"]
BLACK_VERSION = "black==22.3.0"
LINT_PATHS = ["kvtable", "tests", "noxfile.py"]

# Linting with flake8.
#
# We ignore the following rules:
#   E203: whitespace before ‘:’
#   E266: too many leading ‘#’ for block comment
#   E501: line too long
#   I202: Additional newline in a section of imports
FLAKE8_COMMON_ARGS = [
    "--show-source",
    "--builtin=gettext",
    "--max-complexity=20",
    "--exclude=.nox,.cache,env,lib,generated_pb2,*_pb2.py,*_pb2_grpc.py",
    "--ignore=E121,E123,E126,E203,E226,E24,E266,E501,E704,W503,W504,I202",
    "--max-line-length=88",
]


@nox.session(python=UNIT_TEST_PYTHON_VERSIONS)
def unit(session: nox.sessions.Session) -> None:
    """Run the unit test suite."""
    session.install("-e", ".[test]")
    session.run(
        "py.test",
        "--quiet",
        "--cov=kvtable",
        "--cov=tests/unit",
        "--cov-append",
        "--cov-report=",
        "--cov-fail-under=0",
        "tests/unit",
        *session.posargs,
    )


@nox.session(python=DEFAULT_PYTHON_VERSION)
def blacken(session: nox.sessions.Session) -> None:
    """Run black. Format code to uniform standard."""
    session.install(BLACK_VERSION)
    session.run("black", *LINT_PATHS)


@nox.session(python=DEFAULT_PYTHON_VERSION)
def lint(session: nox.sessions.Session) -> None:
    session.install("flake8", BLACK_VERSION)
    session.run("black", "--check", *LINT_PATHS)
    session.run("flake8", *FLAKE8_COMMON_ARGS, "kvtable", "tests")
