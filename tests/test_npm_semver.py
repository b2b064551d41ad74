"""Tests for npm semver parsing, ranges and intersection."""

import pytest

from dependency_audit.npm_semver import (
    InvalidRange,
    InvalidVersion,
    coarse_majors,
    intersect_ranges,
    min_version,
    npm_semver_key,
    parse_range,
    parse_version,
    ranges_intersect,
    satisfies,
)


def test_npm_semver_prerelease_sorting() -> None:
    versions = [
        "0.0.0-insiders.b4008fc",
        "0.0.0",
        "0.0.1",
        "0.0.1-alpha.1",
        "v1.2.3",
        "1.2.3+build.7",
        "1.0.0",
        "1.0.0-beta",
    ]

    keys = [(npm_semver_key(v), v) for v in versions]
    keys = [item for item in keys if item[0] is not None]
    keys.sort(key=lambda item: item[0])
    ordered = [v for _, v in keys]

    assert ordered[-1] in {"1.2.3+build.7", "v1.2.3"}
    assert ordered[-3] == "1.0.0"
    assert ordered[-4] == "1.0.0-beta"
    assert ordered[0] == "0.0.0-insiders.b4008fc"

    # v-prefix and build metadata should not affect ordering vs base version.
    assert npm_semver_key("v1.2.3") == npm_semver_key("1.2.3+build.7")


def test_numeric_prerelease_identifiers_sort_first() -> None:
    assert parse_version("1.0.0-alpha.1") < parse_version("1.0.0-alpha.beta")
    assert parse_version("1.0.0-2") < parse_version("1.0.0-10")
    assert parse_version("1.0.0-alpha") < parse_version("1.0.0-alpha.1")


def test_invalid_version() -> None:
    assert npm_semver_key("not-a-version") is None
    with pytest.raises(InvalidVersion):
        parse_version("1.2")


def test_caret_range() -> None:
    assert satisfies("16.9.0", "^16.8.0")
    assert not satisfies("17.0.0", "^16.8.0")
    assert not satisfies("16.7.9", "^16.8.0")
    assert satisfies("0.2.5", "^0.2.3")
    assert not satisfies("0.3.0", "^0.2.3")
    assert satisfies("0.0.3", "^0.0.3")
    assert not satisfies("0.0.4", "^0.0.3")


def test_tilde_and_x_ranges() -> None:
    assert satisfies("1.2.9", "~1.2.3")
    assert not satisfies("1.3.0", "~1.2.3")
    assert satisfies("1.9.0", "1.x")
    assert not satisfies("2.0.0", "1.x")
    assert satisfies("1.2.7", "1.2")
    assert satisfies("5.0.0", "*")
    assert satisfies("5.0.0", "")


def test_hyphen_and_comparator_ranges() -> None:
    assert satisfies("1.5.0", "1.2.3 - 2.3.4")
    assert satisfies("2.3.4", "1.2.3 - 2.3.4")
    assert not satisfies("2.3.5", "1.2.3 - 2.3.4")
    assert satisfies("2.3.9", "1.2 - 2.3")
    assert not satisfies("2.4.0", "1.2 - 2.3")
    assert satisfies("1.3.0", ">1.2")
    assert not satisfies("1.2.9", ">1.2")
    assert satisfies("2.0.0", ">= 1.0.0 < 3")


def test_or_ranges() -> None:
    assert satisfies("17.0.2", "^16.8.0 || ^17.0.0")
    assert not satisfies("18.0.0", "^16.8.0 || ^17.0.0")


def test_prerelease_matching() -> None:
    assert satisfies("1.2.3-beta.2", "^1.2.3-beta.1")
    assert not satisfies("1.3.0-alpha", "^1.2.3-beta.1")
    assert not satisfies("2.0.0-rc.1", "^1.0.0")
    assert not satisfies("18.0.0-rc.0", "^17.0.0")


def test_protocol_prefixes() -> None:
    assert satisfies("1.4.0", "workspace:^1.2.0")
    assert satisfies("18.2.0", "npm:react@^18.0.0")
    with pytest.raises(InvalidRange):
        parse_range("file:../local")
    with pytest.raises(InvalidRange):
        parse_range("github:user/repo")


def test_intersection() -> None:
    assert not ranges_intersect("^16.0.0", "^17.0.0")
    assert ranges_intersect("^16.0.0", "^16.8.0")
    assert ranges_intersect("^16.8.0 || ^17.0.0", "^17.0.0")
    assert not ranges_intersect(">=2.0.0", "<2.0.0")
    assert ranges_intersect(">=2.0.0", "<=2.0.0")

    intervals = intersect_ranges([parse_range("^16.0.0"), parse_range("^16.8.0")])
    assert [interval.to_expression() for interval in intervals] == ["^16.8.0"]

    tilde = intersect_ranges([parse_range(">=1.0.0"), parse_range("~1.2.0")])
    assert tilde[0].to_expression() == "~1.2.0"

    bounded = intersect_ranges([parse_range(">=1.2.0"), parse_range("<1.3.0")])
    assert bounded[0].to_expression() == ">=1.2.0 <1.3.0"


def test_min_version_and_coarse_majors() -> None:
    assert str(min_version(parse_range("^4.17.21"))) == "4.17.21"
    assert str(min_version(parse_range("*"))) == "0.0.0"
    assert coarse_majors("^16.8.0 || 17.x") == {16, 17}
