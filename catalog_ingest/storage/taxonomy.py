# catalog_ingest/storage/taxonomy.py

"""Category taxonomy loaded from a JSON file."""

import json
import logging
from pathlib import Path
from typing import Any

from catalog_ingest.config.settings import Settings
from catalog_ingest.errors import InvalidArgument
from catalog_ingest.models.category import CategoryLeaf, CategoryNode

logger = logging.getLogger("catalog_ingest.taxonomy")


def _parse_leaf(raw: Any) -> CategoryLeaf | None:
    if isinstance(raw, str):
        return CategoryLeaf(key=raw, label=raw)
    if not isinstance(raw, dict) or not raw.get("key"):
        return None
    aliases = raw.get("aliases") or []
    return CategoryLeaf(
        key=str(raw["key"]),
        label=str(raw.get("label") or raw["key"]),
        aliases=[str(a) for a in aliases if a],
    )


def _parse_node(raw: dict[str, Any]) -> CategoryNode:
    node = CategoryNode(
        key=str(raw.get("key", "")),
        label=str(raw.get("label") or raw.get("key", "")),
    )
    for leaf_raw in raw.get("leaves") or []:
        leaf = _parse_leaf(leaf_raw)
        if leaf is not None:
            node.leaves.append(leaf)
    for child in raw.get("children") or []:
        if isinstance(child, dict):
            node.children.append(_parse_node(child))
    return node


class JsonTaxonomy:
    """Taxonomy tree read from JSON.

    Expected shape::

        [{"key": "home", "label": "Home",
          "children": [{"key": "kitchen", "label": "Kitchen",
                        "leaves": [{"key": "knives", "label": "Kitchen Knives",
                                    "aliases": ["chef knife"]}]}]}]
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path: Path = path or Settings.TAXONOMY_PATH
        self._nodes: list[CategoryNode] | None = None

    def categories(self) -> list[CategoryNode]:
        """Top-level nodes, loaded once."""
        if self._nodes is None:
            self._nodes = self._load()
        return self._nodes

    def leaves(self) -> list[CategoryLeaf]:
        """Every leaf in the tree, depth-first, without duplicate keys."""
        seen: dict[str, CategoryLeaf] = {}
        for node in self.categories():
            for leaf in node.iter_leaves():
                seen.setdefault(leaf.key, leaf)
        return list(seen.values())

    def _load(self) -> list[CategoryNode]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data: Any = json.load(f)
        except FileNotFoundError as exc:
            raise InvalidArgument(
                f"Taxonomy file not found: {self.path}"
            ) from exc
        except json.JSONDecodeError as exc:
            raise InvalidArgument(
                f"Taxonomy file {self.path} is not valid JSON: {exc}"
            ) from exc
        if isinstance(data, dict):
            data = data.get("categories", [])
        if not isinstance(data, list):
            raise InvalidArgument(
                f"Taxonomy file {self.path} must hold a list of categories"
            )
        nodes = [_parse_node(x) for x in data if isinstance(x, dict)]
        logger.info(
            "Loaded taxonomy: %d categories, %d leaves",
            len(nodes),
            sum(len(n.iter_leaves()) for n in nodes),
        )
        return nodes
