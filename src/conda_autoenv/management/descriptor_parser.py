# /src/conda_autoenv/management/descriptor_parser.py
"""
A minimal, line-oriented scanner for environment.yml descriptors.

Only three things are consumed from a descriptor: its `name`, the entries of
its `channels:` list and the entries of its `dependencies:` list (nested
`- pip:` lists included). The scanner tracks which of those sections it is in
by indentation and never attempts to understand the rest of the YAML grammar.
"""

import re
from pathlib import Path
from typing import List, Optional, Tuple

import structlog

from ..data.environment_schemas import DescriptorEntry, EnvironmentDescriptor
from ..exceptions import ConfigError

logger = structlog.get_logger(__name__)

NAME_RE = re.compile(r"^\s*name\s*:(?P<value>.*)$")
SECTION_RE = re.compile(
    r"^(?P<indent>\s*)(?P<key>channels|dependencies)\s*:(?P<rest>.*)$"
)
ITEM_RE = re.compile(r"^(?P<indent>\s*)-(?:\s+(?P<value>.*)|\s*)$")
COMMENT_RE = re.compile(r"(^|\s+)#.*$")
PACKAGE_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-]*")
CHANNEL_RE = re.compile(r"^[^\s,\[\]{}]+$")


def clean_value(raw: str) -> str:
    """Strips a trailing comment, whitespace and one level of matching quotes."""
    value = COMMENT_RE.sub("", raw).strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1].strip()
    return value


def classify_dependency(raw: str, line: int) -> DescriptorEntry:
    """
    Extracts the package name (and optional `channel::` prefix) of a
    dependency spec such as `python=3.8`, `conda-forge::numpy>=1.2` or
    `requests[socks]==2.31`. Anything that does not start with a package name
    is left unclassified.
    """
    value = clean_value(raw)
    channel: Optional[str] = None
    spec = value
    if "::" in value:
        channel, _, spec = value.partition("::")
        channel = channel.strip()
        if not channel:
            return DescriptorEntry(raw=raw, line=line, name=None)

    match = PACKAGE_NAME_RE.match(spec.strip())
    name = match.group(0) if match else None
    return DescriptorEntry(raw=raw, line=line, name=name, channel=channel)


def classify_channel(raw: str, line: int) -> DescriptorEntry:
    value = clean_value(raw)
    name = value if CHANNEL_RE.match(value) else None
    return DescriptorEntry(raw=raw, line=line, name=name)


def _split_flow_list(rest: str) -> Optional[List[str]]:
    """Returns the items of an inline `[a, b]` list, or None if `rest` is not one."""
    value = clean_value(rest)
    if not (value.startswith("[") and value.endswith("]")):
        return None
    inner = value[1:-1].strip()
    return [item for item in (part.strip() for part in inner.split(",")) if item]


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def scan_descriptor(text: str, path: Path) -> EnvironmentDescriptor:
    """
    Scans descriptor text in a single pass.

    Args:
        text: The full contents of the descriptor.
        path: Where the text came from; kept on the result for diagnostics.

    Returns:
        The scanned EnvironmentDescriptor. `name` is empty when no `name:`
        line exists.
    """
    name = ""
    name_found = False
    channels: List[DescriptorEntry] = []
    dependencies: List[DescriptorEntry] = []

    # (section key, indentation of the key line)
    section: Optional[Tuple[str, int]] = None

    for number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        indent = _indent_of(line)
        item = ITEM_RE.match(line)

        if section is not None:
            key, key_indent = section
            if item and indent >= key_indent:
                raw = item.group("value") or ""
                if key == "channels":
                    channels.append(classify_channel(raw, number))
                else:
                    dependencies.append(classify_dependency(raw, number))
                continue
            if not item and indent > key_indent:
                # A non-list line nested in the section: keep it, unclassified.
                target = channels if key == "channels" else dependencies
                target.append(DescriptorEntry(raw=stripped, line=number, name=None))
                continue
            section = None

        header = SECTION_RE.match(line)
        if header:
            key = header.group("key")
            rest = header.group("rest")
            if clean_value(rest):
                flow_items = _split_flow_list(rest)
                values = flow_items if flow_items is not None else [rest]
                for raw in values:
                    if key == "channels":
                        channels.append(classify_channel(raw, number))
                    else:
                        dependencies.append(classify_dependency(raw, number))
            else:
                section = (key, _indent_of(line))
            continue

        if not name_found:
            name_match = NAME_RE.match(line)
            if name_match:
                name_found = True
                value = clean_value(name_match.group("value"))
                name = value.split()[0] if value else ""

    logger.debug(
        "descriptor.scanned",
        path=str(path),
        name=name,
        channels=len(channels),
        dependencies=len(dependencies),
    )
    return EnvironmentDescriptor(
        path=path,
        text=text,
        name=name,
        channels=channels,
        dependencies=dependencies,
    )


def read_descriptor(path: Path) -> EnvironmentDescriptor:
    """
    Reads and scans a descriptor file.

    Raises:
        ConfigError: The file cannot be read or decoded.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"cannot read descriptor '{path}': {e}")
    return scan_descriptor(text, path)
