from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure src-layout imports work when running tests from repo checkout.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from recordkit.io.xlsx.resolver import derive_header, split_camel_case  # noqa: E402


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("dateOfBirth", ["date", "Of", "Birth"]),
        ("HTTPServer2", ["HTTP", "Server", "2"]),
        ("ABC", ["ABC"]),
        ("field1", ["field", "1"]),
        ("a-b", ["a", "-", "b"]),
        ("", []),
    ],
)
def test_split_camel_case_splits_at_character_type_boundaries(
    token: str, expected: list[str]
) -> None:
    assert split_camel_case(token) == expected


@pytest.mark.parametrize(
    ("identifier", "expected"),
    [
        ("agentName", "Agent Name"),
        ("agent_name", "Agent name"),
        ("dateOfBirth", "Date Of Birth"),
        ("HTTPServer2", "HTTP Server 2"),
        ("_commission", "Commission"),
        ("ShapeA", "Shape A"),
        ("x", "X"),
        ("", ""),
        (None, ""),
    ],
)
def test_derive_header_from_identifier(identifier: str | None, expected: str) -> None:
    assert derive_header(identifier) == expected


@pytest.mark.parametrize(
    "identifier",
    ["agentName", "agent_name", "HTTPServer2", "totalAmount2024", "Agent Name"],
)
def test_derive_header_is_idempotent(identifier: str) -> None:
    c_header = derive_header(identifier)
    assert derive_header(c_header) == c_header
