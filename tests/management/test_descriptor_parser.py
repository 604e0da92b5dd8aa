from pathlib import Path

import pytest

from conda_autoenv.exceptions import ConfigError
from conda_autoenv.management.descriptor_parser import (
    classify_dependency,
    read_descriptor,
    scan_descriptor,
)

FULL_DESCRIPTOR = """\
# Analysis environment
name: analysis  # the env name
channels:
  - conda-forge
  - "defaults"
dependencies:
  - python=3.11
  - numpy>=1.26
  - conda-forge::pandas
  - pip
  - pip:
      - requests[socks]==2.31
      - rich
variables:
  name: not-this-one
"""


def scan(text: str):
    return scan_descriptor(text, Path("environment.yml"))


def test_scans_name_channels_and_dependencies():
    descriptor = scan(FULL_DESCRIPTOR)

    assert descriptor.name == "analysis"
    assert [c.name for c in descriptor.channels] == ["conda-forge", "defaults"]
    assert [d.name for d in descriptor.dependencies] == [
        "python",
        "numpy",
        "pandas",
        "pip",
        "pip",
        "requests",
        "rich",
    ]
    assert descriptor.dependencies[2].channel == "conda-forge"


def test_first_name_line_wins_and_comments_are_ignored():
    descriptor = scan("# name: commented\nname: first\nname: second\n")

    assert descriptor.name == "first"


def test_quoted_name_is_unquoted():
    assert scan("name: 'quoted-env'\n").name == "quoted-env"


@pytest.mark.parametrize("text", ["channels:\n  - conda-forge\n", "name:\n", "name:   # none\n"])
def test_missing_or_empty_name(text):
    assert scan(text).name == ""


def test_section_ends_at_next_top_level_key():
    descriptor = scan(
        "channels:\n  - conda-forge\nprefix: /opt/env\ndependencies:\n  - numpy\n"
    )

    assert [c.name for c in descriptor.channels] == ["conda-forge"]
    assert [d.name for d in descriptor.dependencies] == ["numpy"]


def test_list_items_at_key_indentation_belong_to_the_section():
    descriptor = scan("dependencies:\n- numpy\n- scipy\nname: compact\n")

    assert [d.name for d in descriptor.dependencies] == ["numpy", "scipy"]
    assert descriptor.name == "compact"


def test_inline_flow_lists():
    descriptor = scan("name: flow\nchannels: [conda-forge, defaults]\ndependencies: [numpy, scipy=1.11]\n")

    assert [c.name for c in descriptor.channels] == ["conda-forge", "defaults"]
    assert [d.name for d in descriptor.dependencies] == ["numpy", "scipy"]


def test_unclassifiable_entries_are_kept_without_a_name():
    descriptor = scan("dependencies:\n  - {weird: map}\n  -\nchannels:\n  - two words\n")

    assert [d.name for d in descriptor.dependencies] == [None, None]
    assert descriptor.channels[0].name is None


def test_entries_remember_their_line_numbers():
    descriptor = scan(FULL_DESCRIPTOR)

    assert descriptor.channels[0].line == 4
    assert descriptor.dependencies[0].line == 7


@pytest.mark.parametrize(
    "raw, name, channel",
    [
        ("python=3.8", "python", None),
        ("numpy >=1.2", "numpy", None),
        ("conda-forge::numpy", "numpy", "conda-forge"),
        ("git+https://github.com/org/repo.git", "git", None),
        ("::numpy", None, None),
        ("-e .", None, None),
    ],
)
def test_classify_dependency(raw, name, channel):
    entry = classify_dependency(raw, 1)

    assert entry.name == name
    assert entry.channel == channel


def test_read_descriptor_reports_unreadable_files(tmp_path: Path):
    with pytest.raises(ConfigError):
        read_descriptor(tmp_path / "missing.yml")


def test_read_descriptor_keeps_the_full_text(tmp_path: Path):
    path = tmp_path / "environment.yml"
    path.write_text(FULL_DESCRIPTOR)

    descriptor = read_descriptor(path)

    assert descriptor.text == FULL_DESCRIPTOR
    assert descriptor.path == path
