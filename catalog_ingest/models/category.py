# catalog_ingest/models/category.py

"""Category taxonomy models."""

from dataclasses import dataclass, field


@dataclass
class CategoryLeaf:
    """The most specific taxonomy node listings are tagged against."""

    key: str
    label: str
    aliases: list[str] = field(
        default_factory=lambda: list[str]()
    )


@dataclass
class CategoryNode:
    """A top-level or intermediate category grouping leaves."""

    key: str
    label: str
    leaves: list[CategoryLeaf] = field(
        default_factory=lambda: list[CategoryLeaf]()
    )
    children: list["CategoryNode"] = field(
        default_factory=lambda: list["CategoryNode"]()
    )

    def iter_leaves(self) -> list[CategoryLeaf]:
        """Return all leaves under this node, depth-first."""
        out: list[CategoryLeaf] = list(self.leaves)
        for child in self.children:
            out.extend(child.iter_leaves())
        return out
