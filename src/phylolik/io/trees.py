"""
Phylogenetic tree parsing and manipulation.

Node ids are assigned in pre-order while parsing, so the root always has id 0
and every node id is smaller than the ids of its descendants. The id of a
non-root node doubles as the id of the branch connecting it to its parent.
"""

import re
from dataclasses import dataclass, field
from typing import Iterator, Optional

from ..exceptions import StructuralError


@dataclass(eq=False)
class TreeNode:
    """
    Phylogenetic tree node.

    Attributes
    ----------
    id : int
        Node identifier (also the identifier of the branch above the node)
    name : Optional[str]
        Node name (for leaves)
    parent : Optional[TreeNode]
        Parent node
    children : list[TreeNode]
        Child nodes
    branch_length : float
        Length of the branch to the parent
    label : Optional[str]
        Branch label (e.g., '#1'); branches sharing a label share a model
        in :func:`phylolik.process.labelled_process`
    """

    id: int
    name: Optional[str] = None
    parent: Optional["TreeNode"] = None
    children: list["TreeNode"] = field(default_factory=list)
    branch_length: float = 0.0
    label: Optional[str] = None

    @property
    def is_leaf(self) -> bool:
        """Check if node is a leaf."""
        return len(self.children) == 0

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def siblings(self) -> list["TreeNode"]:
        """Other children of this node's parent, in tree order."""
        if self.parent is None:
            return []
        return [c for c in self.parent.children if c is not self]

    def __repr__(self) -> str:
        return f"TreeNode(id={self.id}, name={self.name!r}, n_children={len(self.children)})"


@dataclass(eq=False)
class Tree:
    """
    Phylogenetic tree.

    Attributes
    ----------
    root : TreeNode
        Root node of the tree
    n_nodes : int
        Total number of nodes
    n_leaves : int
        Number of leaf nodes
    leaf_names : list[str]
        Names of leaf nodes, in post-order
    """

    root: TreeNode
    n_nodes: int
    n_leaves: int
    leaf_names: list[str]
    _index: dict = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self._reindex()

    @classmethod
    def from_newick(cls, newick_string: str) -> "Tree":
        """
        Parse Newick format tree string.

        Parameters
        ----------
        newick_string : str
            Newick format tree

        Returns
        -------
        Tree
            Parsed tree

        Raises
        ------
        StructuralError
            If the string is not a valid tree or a branch length is negative
        """
        newick = re.sub(r'//.*', '', newick_string)
        newick = re.sub(r'\[.*?\]', '', newick)
        newick = newick.strip()

        if ';' not in newick:
            raise StructuralError("Invalid Newick format: missing semicolon")

        tree_line = newick[:newick.index(';')]
        tree_line = tree_line.replace('\n', '').replace('\t', '').replace('\r', '')
        if not tree_line.strip():
            raise StructuralError("Invalid Newick format: no tree found")

        node_id_counter = [0]

        def skip_whitespace(s: str, pos: int) -> int:
            while pos < len(s) and s[pos] in ' \t\n\r':
                pos += 1
            return pos

        def parse_node(s: str, start: int, parent: Optional[TreeNode] = None) -> tuple[TreeNode, int]:
            node = TreeNode(id=node_id_counter[0], parent=parent)
            node_id_counter[0] += 1
            pos = skip_whitespace(s, start)

            if pos < len(s) and s[pos] == '(':
                pos = skip_whitespace(s, pos + 1)
                while True:
                    child, pos = parse_node(s, pos, node)
                    node.children.append(child)
                    pos = skip_whitespace(s, pos)

                    if pos < len(s) and s[pos] == ',':
                        pos = skip_whitespace(s, pos + 1)
                        continue
                    elif pos < len(s) and s[pos] == ')':
                        pos = skip_whitespace(s, pos + 1)
                        break
                    else:
                        raise StructuralError(f"Expected ',' or ')' at position {pos}")

            name_start = pos
            while pos < len(s) and s[pos] not in ',:();# \t\n\r':
                pos += 1
            if pos > name_start:
                node.name = s[name_start:pos]

            pos = skip_whitespace(s, pos)

            if pos < len(s) and s[pos] == '#':
                pos += 1
                label_start = pos
                while pos < len(s) and s[pos] not in ',:(); \t\n\r':
                    pos += 1
                node.label = '#' + s[label_start:pos]

            pos = skip_whitespace(s, pos)

            if pos < len(s) and s[pos] == ':':
                pos = skip_whitespace(s, pos + 1)
                length_start = pos
                while pos < len(s) and s[pos] not in ',(); \t\n\r':
                    pos += 1
                try:
                    node.branch_length = float(s[length_start:pos])
                except ValueError:
                    raise StructuralError(f"Invalid branch length: {s[length_start:pos]}")
                if node.branch_length < 0:
                    raise StructuralError(
                        f"Negative branch length {node.branch_length} above node "
                        f"{node.name or node.id}"
                    )

            return node, pos

        root, pos = parse_node(tree_line, 0, None)
        if skip_whitespace(tree_line, pos) != len(tree_line):
            raise StructuralError(f"Unexpected characters after position {pos}")

        return cls._from_root(root)

    @classmethod
    def _from_root(cls, root: TreeNode) -> "Tree":
        postorder = cls._postorder_from(root)
        leaf_names = [n.name if n.name else str(n.id) for n in postorder if n.is_leaf]
        return cls(root=root, n_nodes=len(postorder), n_leaves=len(leaf_names), leaf_names=leaf_names)

    @staticmethod
    def _postorder_from(root: TreeNode) -> list[TreeNode]:
        result = []

        def traverse(node: TreeNode) -> None:
            for child in node.children:
                traverse(child)
            result.append(node)

        traverse(root)
        return result

    def _reindex(self) -> None:
        self._index = {node.id: node for node in self.preorder()}
        if len(self._index) != self.n_nodes:
            raise StructuralError(
                f"Tree declares {self.n_nodes} nodes but {len(self._index)} distinct ids were found"
            )

    def postorder(self) -> list[TreeNode]:
        """
        Return nodes in post-order traversal (leaves to root).

        Returns
        -------
        list[TreeNode]
            Nodes in post-order
        """
        return self._postorder_from(self.root)

    def preorder(self) -> list[TreeNode]:
        """Return nodes in pre-order traversal (root to leaves)."""
        result = []
        stack = [self.root]
        while stack:
            node = stack.pop()
            result.append(node)
            stack.extend(reversed(node.children))
        return result

    def nodes(self) -> Iterator[TreeNode]:
        return iter(self._index.values())

    def leaves(self) -> list[TreeNode]:
        return [node for node in self.postorder() if node.is_leaf]

    def node_ids(self) -> list[int]:
        return sorted(self._index)

    def branch_ids(self) -> list[int]:
        """Ids of all non-root nodes, i.e. of all branches."""
        return [node_id for node_id in self.node_ids() if node_id != self.root.id]

    def get_node(self, node_id: int) -> TreeNode:
        try:
            return self._index[node_id]
        except KeyError:
            raise StructuralError(f"Node {node_id} not found in tree") from None

    def has_node(self, node_id: int) -> bool:
        return node_id in self._index

    def get_leaf(self, name: str) -> TreeNode:
        for node in self.leaves():
            if node.name == name:
                return node
        raise StructuralError(f"No leaf named {name!r}")

    def get_branches(self) -> list[tuple[TreeNode, TreeNode]]:
        """
        Get all branches as (parent, child) pairs.

        Returns
        -------
        list[tuple[TreeNode, TreeNode]]
            List of (parent, child) tuples for each branch
        """
        return [(node.parent, node) for node in self.preorder() if node.parent is not None]

    def branch_lengths(self) -> dict[int, float]:
        """Map from branch id to branch length."""
        return {node.id: node.branch_length for node in self.preorder() if node.parent is not None}

    def set_branch_length(self, node_id: int, length: float) -> None:
        node = self.get_node(node_id)
        if node.parent is None:
            raise StructuralError("The root node has no branch")
        if length < 0:
            raise StructuralError(f"Negative branch length {length} for branch {node_id}")
        node.branch_length = float(length)

    def ancestors(self, node_id: int) -> list[TreeNode]:
        """Strict ancestors of a node, nearest first."""
        result = []
        node = self.get_node(node_id).parent
        while node is not None:
            result.append(node)
            node = node.parent
        return result

    @property
    def is_rooted(self) -> bool:
        """A tree is rooted when its root node has exactly two children."""
        return len(self.root.children) == 2

    def unroot(self) -> "Tree":
        """
        Return an unrooted copy of this tree.

        The bifurcating root is removed by merging its two branches; the
        internal child becomes the new (multifurcating) root. Node ids are
        reassigned in pre-order.

        Raises
        ------
        StructuralError
            If both children of the root are leaves
        """
        tree = self.copy()
        if not tree.is_rooted:
            return tree

        left, right = tree.root.children
        if left.is_leaf and right.is_leaf:
            raise StructuralError("Cannot unroot a tree with only two leaves")
        new_root, other = (left, right) if not left.is_leaf else (right, left)
        other.branch_length += new_root.branch_length
        other.parent = new_root
        new_root.children.append(other)
        new_root.parent = None
        new_root.branch_length = 0.0
        new_root.label = None

        counter = 0
        stack = [new_root]
        while stack:
            node = stack.pop()
            node.id = counter
            counter += 1
            stack.extend(reversed(node.children))
        return self._from_root(new_root)

    def copy(self) -> "Tree":
        """Deep copy preserving node ids."""

        def clone(node: TreeNode, parent: Optional[TreeNode]) -> TreeNode:
            new = TreeNode(
                id=node.id,
                name=node.name,
                parent=parent,
                branch_length=node.branch_length,
                label=node.label,
            )
            new.children = [clone(child, new) for child in node.children]
            return new

        return Tree(
            root=clone(self.root, None),
            n_nodes=self.n_nodes,
            n_leaves=self.n_leaves,
            leaf_names=list(self.leaf_names),
        )

    def to_newick(self, precision: int = 6) -> str:
        def render(node: TreeNode) -> str:
            text = ""
            if node.children:
                text = "(" + ",".join(render(child) for child in node.children) + ")"
            if node.name:
                text += node.name
            if node.label:
                text += f" {node.label}"
            if node.parent is not None:
                text += f":{node.branch_length:.{precision}g}"
            return text

        return render(self.root) + ";"

    def __repr__(self) -> str:
        return f"Tree(n_nodes={self.n_nodes}, n_leaves={self.n_leaves}, rooted={self.is_rooted})"
