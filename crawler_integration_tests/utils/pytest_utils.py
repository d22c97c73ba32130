"""Identification of the running test, used for naming per-test resources."""

import os
import pathlib as pl
import re
import typing as tp

import pytest

_TEST_ID_RE = re.compile(r"(^.*/?test_\w+\.py)(?:::)?(Test\w+)?::(test_\w+)(\[.+\])? *\(?(\w+)?")


class PytestTest(tp.NamedTuple):
    test_function: str
    test_file: pl.Path
    full: str
    test_class: str = ""
    test_params: str = ""
    stage: str = ""

    def __bool__(self) -> bool:
        return bool(self.test_function)

    @property
    def owner(self) -> str:
        """Return name of the test class, or of the test module for plain test functions."""
        return self.test_class or self.test_file.stem

    @classmethod
    def from_item(cls, item: pytest.Item) -> "PytestTest":
        """Get components of the test from collected pytest item."""
        test_cls = getattr(item, "cls", None)
        return cls(
            test_function=getattr(item, "originalname", item.name),
            test_file=pl.Path(item.path),
            full=item.nodeid,
            test_class=test_cls.__name__ if test_cls else "",
        )


def parse_test_id(test_id: str) -> PytestTest:
    """Get components (test file, test name, stage) of pytest test ID.

    >>> parse_test_id("tests/test_foo.py::TestFoo::test_bar[1] (call)").test_class
    'TestFoo'
    """
    if not test_id:
        return PytestTest(test_function="", test_file=pl.Path("/nonexistent"), full="")

    match = _TEST_ID_RE.search(test_id)
    if not match:
        msg = f"Failed to match test ID '{test_id}'."
        raise ValueError(msg)

    return PytestTest(
        test_function=match.group(3),
        test_file=pl.Path(match.group(1)),
        full=test_id,
        test_class=match.group(2) or "",
        test_params=match.group(4) or "",
        stage=match.group(5) or "",
    )


def get_current_test() -> PytestTest:
    """Get components of the test that is running right now."""
    return parse_test_id(os.environ.get("PYTEST_CURRENT_TEST") or "")
