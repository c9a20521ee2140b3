"""
Shared fixtures for the corset tests.

Policy files are written under pytest's tmp_path so every test gets a clean
directory.
"""

import json

import pytest

from policy_split import Statement


def make_policy(statements):
    return {"Version": "2012-10-17", "Statement": statements}


def sized(size, tag=0):
    """Statement record of an exact size; tag tells equal sizes apart."""
    return Statement(content={"Sid": f"s{tag}", "size": size}, size=size)


def large_statements(count):
    """Statements of roughly 650 characters each."""
    return [
        {
            "Sid": f"Deny{i}",
            "Effect": "Deny",
            "Action": [f"service{i}:Action{j:03d}" for j in range(25)],
            "Resource": "*",
        }
        for i in range(count)
    ]


@pytest.fixture
def write_policy(tmp_path):
    """Write a policy document (indented, like a hand-edited SCP) and return its path."""

    def _write(name, statements, directory=None):
        path = (directory or tmp_path) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(make_policy(statements), indent=2))
        return path

    return _write


@pytest.fixture
def allow_get():
    return {"Effect": "Allow", "Action": "s3:GetObject", "Resource": "*"}


@pytest.fixture
def deny_delete():
    return {"Effect": "Deny", "Action": "s3:DeleteObject", "Resource": "*"}
