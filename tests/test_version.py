import pytest

import version


@pytest.mark.parametrize(
    "identifier, expected",
    [
        ("1.2.0", False),
        ("1.3.0-dev", True),
        ("1.3.0.dev2", True),
        ("dev-1.3", True),
        ("1.3+dev", True),
        ("1.3.0-devices", False),
        ("", False),
    ],
)
def test_dev_marker_detection(identifier, expected):
    assert version.is_dev_build(identifier, environ={}) is expected


def test_env_override_wins():
    assert version.is_dev_build("1.2.0", environ={version.DEV_MODE_ENV_VAR: "yes"}) is True
    assert version.is_dev_build("1.3.0-dev", environ={version.DEV_MODE_ENV_VAR: "0"}) is False
    assert version.is_dev_build("1.3.0-dev", environ={version.DEV_MODE_ENV_VAR: "maybe"}) is True


def test_version_label():
    assert version.version_label("1.2.0", environ={}) == "v1.2.0"
    assert version.version_label("v2.0.0-dev", environ={}) == "v2.0.0-dev (dev)"
