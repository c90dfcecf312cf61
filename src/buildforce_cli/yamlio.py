"""Comment-preserving YAML helpers.

Every context file is read and written through ruamel's round-trip document
model so that explanatory comments, key order and quoting survive a rewrite.
"""

from io import StringIO
from pathlib import Path
from typing import Any, Iterable

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap, CommentedSeq
from ruamel.yaml.error import YAMLError
from ruamel.yaml.scalarstring import DoubleQuotedScalarString, LiteralScalarString

# Raised by load() for unreadable, undecodable or malformed files
LOAD_ERRORS = (OSError, UnicodeDecodeError, YAMLError)

# Arrays rendered inline (`tags: [a, b]`) in context indexes
FLOW_KEYS = frozenset({
    "tags",
    "related_context",
    "languages",
    "frameworks",
    "needs_clarification",
    "recommended_focus",
    "new_discoveries",
})


def _yaml() -> YAML:
    yaml = YAML()
    yaml.preserve_quotes = True
    yaml.indent(mapping=2, sequence=4, offset=2)
    yaml.width = 4096
    return yaml


def loads(text: str) -> Any:
    return _yaml().load(text)


def load(path: Path) -> Any:
    return loads(Path(path).read_text(encoding="utf-8"))


def dumps(data: Any) -> str:
    buf = StringIO()
    _yaml().dump(data, buf)
    return buf.getvalue()


def dump(data: Any, path: Path) -> None:
    Path(path).write_text(dumps(data), encoding="utf-8")


def flow_seq(items: Iterable[Any]) -> CommentedSeq:
    seq = CommentedSeq(items)
    seq.fa.set_flow_style()
    return seq


def block_style(seq: Any) -> None:
    """Render a sequence one item per line, e.g. an empty ``[]`` about to gain mappings."""
    if isinstance(seq, CommentedSeq):
        seq.fa.set_block_style()


def quoted(value: Any) -> DoubleQuotedScalarString:
    return DoubleQuotedScalarString(str(value))


def text_scalar(value: str) -> str:
    """Render multi-line strings as literal blocks, leave the rest plain."""
    if isinstance(value, str) and "\n" in value:
        return LiteralScalarString(value)
    return value


def apply_flow_style(node: Any, keys: frozenset = FLOW_KEYS) -> None:
    """Switch every list stored under one of ``keys`` to inline flow style."""
    if isinstance(node, dict):
        for key, value in list(node.items()):
            if key in keys and isinstance(value, list):
                if isinstance(value, CommentedSeq):
                    value.fa.set_flow_style()
                else:
                    node[key] = flow_seq(value)
            else:
                apply_flow_style(value, keys)
    elif isinstance(node, list):
        for item in node:
            apply_flow_style(item, keys)


def new_map(pairs: Iterable[tuple[str, Any]] = ()) -> CommentedMap:
    m = CommentedMap()
    for key, value in pairs:
        m[key] = value
    return m
