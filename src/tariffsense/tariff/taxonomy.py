"""Read-only HTS code tree with prefix, level and text queries.

Codes are stored as bare digit strings ("6912004400").  Each node's parent is
the node two digits shorter; ingest refuses rows whose parent is missing so
that every path resolves to a chapter.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Literal, Mapping, Optional, Protocol, Sequence, Tuple

from tariffsense.settings import default_taxonomy_path
from tariffsense.tariff.errors import TaxonomyError

logger = logging.getLogger(__name__)

Level = Literal["chapter", "heading", "subheading", "tariff_line", "statistical"]

LEVEL_BY_LENGTH: Dict[int, Level] = {
    2: "chapter",
    4: "heading",
    6: "subheading",
    8: "tariff_line",
    10: "statistical",
}
PREFIX_LENGTHS: Tuple[int, ...] = (2, 4, 6, 8, 10)


def normalize_code(code: str) -> str:
    return re.sub(r"\D", "", str(code or ""))


def format_code(code: str) -> str:
    """Render digits in schedule notation: 6912, 6912.00, 6912.00.44, 6912.00.44.00."""

    digits = normalize_code(code)
    if len(digits) <= 4:
        return digits
    parts = [digits[:4]]
    rest = digits[4:]
    while rest:
        parts.append(rest[:2])
        rest = rest[2:]
    return ".".join(parts)


def chapter_of(code: str) -> str:
    return normalize_code(code)[:2]


@dataclass(frozen=True)
class TaxonomyNode:
    code: str
    formatted_code: str
    level: Level
    parent_code: Optional[str]
    description: str
    base_rate: Optional[str] = None

    @property
    def chapter(self) -> str:
        return self.code[:2]


# ---------------------------------------------------------------------------
# Path cache
# ---------------------------------------------------------------------------
class PathCache(Protocol):
    """Read-through cache of code -> ancestor codes (root first, node last)."""

    def get(self, code: str) -> Optional[Tuple[str, ...]]:
        ...

    def put(self, code: str, path: Tuple[str, ...]) -> Tuple[str, ...]:
        ...


class InMemoryPathCache:
    """Thread-safe path cache.

    ``put`` is first-writer-wins: concurrent resolvers may compute the same
    path twice, but readers only ever observe a complete tuple.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._paths: Dict[str, Tuple[str, ...]] = {}

    def get(self, code: str) -> Optional[Tuple[str, ...]]:
        with self._lock:
            return self._paths.get(code)

    def put(self, code: str, path: Tuple[str, ...]) -> Tuple[str, ...]:
        frozen = tuple(path)
        with self._lock:
            return self._paths.setdefault(code, frozen)

    def clear(self) -> None:
        with self._lock:
            self._paths.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class TaxonomyStore:
    """Immutable, content-addressed view over taxonomy nodes."""

    def __init__(self, nodes: Iterable[TaxonomyNode], *, path_cache: Optional[PathCache] = None) -> None:
        index: Dict[str, TaxonomyNode] = {}
        for node in nodes:
            if node.code in index:
                raise TaxonomyError(f"duplicate taxonomy code {node.formatted_code}")
            index[node.code] = node
        for node in index.values():
            if node.level == "chapter":
                continue
            if node.parent_code not in index:
                raise TaxonomyError(
                    f"{node.formatted_code} has no parent {format_code(node.parent_code or '')}"
                )
        self._nodes: Dict[str, TaxonomyNode] = dict(sorted(index.items()))
        self._children: Dict[str, List[str]] = {}
        for node in self._nodes.values():
            if node.parent_code:
                self._children.setdefault(node.parent_code, []).append(node.code)
        self.path_cache: PathCache = path_cache if path_cache is not None else InMemoryPathCache()

    # -- construction ------------------------------------------------------

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, object]],
        *,
        path_cache: Optional[PathCache] = None,
    ) -> "TaxonomyStore":
        return cls((build_node(record) for record in records), path_cache=path_cache)

    @classmethod
    def from_jsonl(cls, path: Path, *, path_cache: Optional[PathCache] = None) -> "TaxonomyStore":
        """Load one JSON object per line: ``{hts_code, description, general?}``."""

        records: List[Dict[str, object]] = []
        with Path(path).open(encoding="utf-8") as fh:
            for line_no, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as exc:
                    raise TaxonomyError(f"{Path(path).name}:{line_no}: invalid JSON ({exc.msg})") from exc
        store = cls.from_records(records, path_cache=path_cache)
        logger.info("Loaded %d taxonomy nodes from %s", len(store), Path(path).name)
        return store

    # -- point queries -----------------------------------------------------

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and normalize_code(code) in self._nodes

    def __iter__(self) -> Iterator[TaxonomyNode]:
        return iter(self._nodes.values())

    def get(self, code: str) -> Optional[TaxonomyNode]:
        return self._nodes.get(normalize_code(code))

    def children(self, code: str) -> List[TaxonomyNode]:
        return [self._nodes[child] for child in self._children.get(normalize_code(code), [])]

    def is_leaf(self, code: str) -> bool:
        digits = normalize_code(code)
        return digits in self._nodes and not self._children.get(digits)

    # -- set queries -------------------------------------------------------

    def chapters(self) -> List[TaxonomyNode]:
        return self.by_level("chapter")

    def by_level(self, level: Level) -> List[TaxonomyNode]:
        return [node for node in self._nodes.values() if node.level == level]

    def by_prefix(self, prefix: str, *, levels: Optional[Sequence[Level]] = None) -> List[TaxonomyNode]:
        digits = normalize_code(prefix)
        wanted = set(levels) if levels else None
        return [
            node
            for code, node in self._nodes.items()
            if code.startswith(digits) and (wanted is None or node.level in wanted)
        ]

    def leaves(self, prefix: str = "") -> List[TaxonomyNode]:
        digits = normalize_code(prefix)
        return [
            node
            for code, node in self._nodes.items()
            if code.startswith(digits) and not self._children.get(code)
        ]

    def search(
        self,
        text: str,
        *,
        prefix: str = "",
        levels: Optional[Sequence[Level]] = None,
    ) -> List[TaxonomyNode]:
        """Case-insensitive substring match over node descriptions."""

        needle = text.strip().lower()
        if not needle:
            return []
        return [node for node in self.by_prefix(prefix, levels=levels) if needle in node.description.lower()]

    # -- paths -------------------------------------------------------------

    def path_codes(self, code: str) -> Tuple[str, ...]:
        digits = normalize_code(code)
        cached = self.path_cache.get(digits)
        if cached is not None:
            return cached
        if digits not in self._nodes:
            return ()
        chain = tuple(
            digits[:length]
            for length in PREFIX_LENGTHS
            if length <= len(digits) and digits[:length] in self._nodes
        )
        return self.path_cache.put(digits, chain)

    def path(self, code: str) -> Tuple[TaxonomyNode, ...]:
        """Ancestor chain from chapter down to ``code`` (inclusive)."""

        return tuple(self._nodes[item] for item in self.path_codes(code) if item in self._nodes)

    def full_description(self, code: str, *, separator: str = " > ", include_chapter: bool = False) -> str:
        nodes = self.path(code)
        if not include_chapter:
            nodes = tuple(node for node in nodes if node.level != "chapter")
        return separator.join(node.description for node in nodes)


def build_node(record: Mapping[str, object]) -> TaxonomyNode:
    raw_code = str(record.get("hts_code") or record.get("htsno") or record.get("code") or "")
    digits = normalize_code(raw_code)
    level = LEVEL_BY_LENGTH.get(len(digits))
    if level is None:
        raise TaxonomyError(f"malformed taxonomy code {raw_code!r}")
    description = str(record.get("description") or "").strip()
    if not description:
        raise TaxonomyError(f"taxonomy code {raw_code!r} has no description")
    rate = record.get("general", record.get("base_rate"))
    base_rate = str(rate).strip() if rate not in (None, "") else None
    return TaxonomyNode(
        code=digits,
        formatted_code=format_code(digits),
        level=level,
        parent_code=digits[:-2] if len(digits) > 2 else None,
        description=description,
        base_rate=base_rate or None,
    )


@lru_cache(maxsize=4)
def load_default_store(path: Optional[str] = None) -> TaxonomyStore:
    """Return the bundled sample taxonomy (or ``path``), loaded once."""

    return TaxonomyStore.from_jsonl(Path(path) if path else default_taxonomy_path())
