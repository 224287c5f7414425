"""Nox configuration."""

from __future__ import annotations

import os
from pathlib import Path

import nox

nox.options.default_venv_backend = "uv|virtualenv"

package = "event_sink"
python_versions = ["3.10", "3.11", "3.12", "3.13"]
main_python = python_versions[-1]
locations = "event_sink", "tests", "noxfile.py"
nox.options.sessions = [
    f"mypy-{main_python}",
    f"tests-{main_python}",
]


def _run_pytest(session: nox.Session, *pytest_args: str, coverage: bool = True) -> None:
    """Run pytest with the given arguments."""
    args = ["pytest", *pytest_args]

    if coverage:
        args = ["coverage", "run", "--parallel", "-m", *args]

    try:
        session.run(*args)
    finally:
        if coverage and session.interactive:
            session.notify("coverage", posargs=[])


@nox.session(python=[python_versions[0], main_python])
def mypy(session: nox.Session) -> None:
    """Check types with mypy."""
    args = session.posargs or [package]
    session.install("-e", ".[typing]")
    session.run("mypy", *args)


@nox.session(python=python_versions, tags=["test"])
def tests(session: nox.Session) -> None:
    """Execute pytest tests and compute coverage."""
    session.install("-e", ".[testing]")

    _run_pytest(
        session,
        "--durations=10",
        "-m",
        "not external",
        *session.posargs,
    )


@nox.session(name="test-external", python=main_python, tags=["test"])
def test_external(session: nox.Session) -> None:
    """Execute tests against the PostgreSQL server in EVENT_SINK_TEST_URL."""
    if "EVENT_SINK_TEST_URL" not in os.environ:
        session.skip("EVENT_SINK_TEST_URL is not set")

    session.install("-e", ".[testing]")
    _run_pytest(session, "-m", "external", *session.posargs, coverage=False)


@nox.session()
def coverage(session: nox.Session) -> None:
    """Generate coverage report."""
    args = session.posargs or ["report", "-m"]

    session.install("coverage[toml]")

    if not session.posargs and any(Path().glob(".coverage.*")):
        session.run("coverage", "combine")

    session.run("coverage", *args)
