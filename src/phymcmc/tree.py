"""
Rooted binary trees with transactional edits.

A TreeState owns a fixed set of nodes: ``n`` tips numbered 0..n-1 (each with
a taxon) followed by ``n - 1`` internal nodes. Every node has a height (time
before the present); tips have no children and internal nodes exactly two.

Structural changes only happen inside an edit transaction:

    with tree.edit() as edit:
        tree.remove_child(parent, child)
        tree.add_child(new_parent, child)
        if something_is_wrong:
            edit.rollback()

On a clean exit the edit is validated and the queued TreeChangedEvents are
delivered to listeners. An explicit rollback, an exception, or a failed
validation restores the exact node state captured when the edit began.

Public API:
    Node: One vertex of the tree
    TreeState: The tree, its queries, edits, snapshots and validation
    TreeEditGuard: Context manager returned by TreeState.edit()
    TreeChangedEvent / TreeChangeKind: Change notifications
    NodeHeightParameter: Parameter view over internal node heights
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .error_handling import InvalidTreeState
from .parameters import Bounds


class TreeChangeKind(IntEnum):
    """What changed about a node."""
    HEIGHT = 0
    STRUCTURE = 1
    RESTORED = 2

    def __str__(self):
        return self.name.title()


@dataclass(frozen=True)
class TreeChangedEvent:
    """Notification delivered to tree listeners (node is None for whole-tree events)."""
    node: Optional['Node']
    kind: TreeChangeKind


class Node:
    """
    A tree vertex.

    Attributes are read freely; they are only ever written by TreeState.
    """
    __slots__ = ('number', 'taxon', 'height', 'parent', 'children')

    def __init__(self, number: int, height: float = 0.0, taxon: Optional[str] = None):
        self.number = number
        self.taxon = taxon
        self.height = float(height)
        self.parent: Optional['Node'] = None
        self.children: List['Node'] = []

    @property
    def is_external(self) -> bool:
        return not self.children

    def __repr__(self):
        label = self.taxon if self.taxon is not None else f"#{self.number}"
        return f"Node({label}, height={self.height:g})"


class TreeEditGuard:
    """
    Scoped tree edit: commits on normal exit, rolls back otherwise.

    Returned by TreeState.edit(). Calling rollback() inside the block ends the
    edit immediately and restores the tree; the block may then return early.
    """

    def __init__(self, tree: 'TreeState'):
        self.tree = tree
        self._done = False

    def __enter__(self):
        self.tree.begin_edit()
        return self

    def rollback(self) -> None:
        if not self._done:
            self._done = True
            self.tree.rollback_edit()

    def commit(self) -> None:
        if not self._done:
            self._done = True
            self.tree.end_edit()

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.rollback()
        else:
            self.commit()
        return False


# Snapshot of every node: (parent number or -1, child numbers, height), plus root number
_Snapshot = Tuple[int, Tuple[Tuple[int, Tuple[int, ...], float], ...]]


class TreeState:
    """
    Mutable rooted binary tree.

    Args:
        nodes: All nodes, with node.number equal to its position; tips first
        root: The root node
        name: Identifier used in messages

    Most callers build trees with from_newick() or caterpillar().
    """

    def __init__(self, nodes: Sequence[Node], root: Node, name: str = 'tree'):
        self.name = name
        self._nodes = list(nodes)
        self._root = root
        for index, node in enumerate(self._nodes):
            if node.number != index:
                raise InvalidTreeState(f"{name}: node numbered {node.number} stored at position {index}")
        tips = [node for node in self._nodes if node.is_external]
        self._tip_count = len(tips)
        if self._tip_count < 2:
            raise InvalidTreeState(f"{name}: a tree needs at least 2 tips, got {self._tip_count}")
        self._taxa = frozenset(node.taxon for node in tips)

        self._editing = False
        self._edit_snapshot: Optional[_Snapshot] = None
        self._pending: List[TreeChangedEvent] = []
        self._structure_touched = False
        self._listeners: List[Callable[[TreeChangedEvent], None]] = []
        self.last_edit_changed_topology = False
        self.structure_version = 0

        self.check_tree_is_valid()
        self._stored = self._snapshot()

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_newick(cls, text: str, name: str = 'tree') -> 'TreeState':
        """
        Build a tree from a Newick string.

        Heights come from branch lengths (missing lengths count as 1): the
        deepest tip gets height 0. Tips are numbered in order of appearance
        and internal nodes in post-order, so the root is the last node.

        Example:
            TreeState.from_newick("((((A:1,B:1):1,C:2):1,D:3):1,E:4);")
        """
        parser = _NewickParser(text)
        structure = parser.parse()

        tips: List[Node] = []
        internals: List[Tuple[Node, list]] = []

        def build(entry, depth):
            label, length, children = entry
            depth = depth + length
            if not children:
                node = Node(len(tips), taxon=label)
                tips.append(node)
                return node, depth, [(node, depth)]
            if len(children) != 2:
                raise ValueError(f"Newick node has {len(children)} children; trees must be bifurcating")
            built = [build(child, depth) for child in children]
            node = Node(-1)
            for child, _, _ in built:
                child.parent = node
                node.children.append(child)
            internals.append((node, depth))
            depths = [item for _, _, sub in built for item in sub]
            return node, depth, depths + [(node, depth)]

        root, _, depths = build(structure, -structure[1])
        max_depth = max(depth for node, depth in depths if node.is_external)
        for node, depth in depths:
            node.height = max_depth - depth
        for offset, (node, _) in enumerate(internals):
            node.number = len(tips) + offset
        nodes = tips + [node for node, _ in internals]
        return cls(nodes, root, name=name)

    @classmethod
    def caterpillar(cls, taxa: Sequence[str], internal_heights: Sequence[float],
                    tip_heights: Optional[Sequence[float]] = None,
                    name: str = 'tree') -> 'TreeState':
        """
        Build the ladder tree (((t0,t1),t2),...,tn).

        Args:
            taxa: Tip labels, at least 2
            internal_heights: Heights of the n-1 internal nodes from the cherry upward
            tip_heights: Tip heights (default all 0)
        """
        n = len(taxa)
        if len(internal_heights) != n - 1:
            raise ValueError(f"{n} taxa need {n - 1} internal heights, got {len(internal_heights)}")
        if tip_heights is None:
            tip_heights = [0.0] * n
        tips = [Node(i, height, taxon) for i, (taxon, height) in enumerate(zip(taxa, tip_heights))]
        internals = []
        below = tips[0]
        for k, height in enumerate(internal_heights):
            node = Node(n + k, height)
            for child in (below, tips[k + 1]):
                child.parent = node
                node.children.append(child)
            internals.append(node)
            below = node
        return cls(tips + internals, below, name=name)

    def copy(self, name: Optional[str] = None) -> 'TreeState':
        """Independent deep copy (listeners are not copied)."""
        nodes = [Node(node.number, node.height, node.taxon) for node in self._nodes]
        for node, twin in zip(self._nodes, nodes):
            if node.parent is not None:
                twin.parent = nodes[node.parent.number]
            twin.children = [nodes[child.number] for child in node.children]
        return TreeState(nodes, nodes[self._root.number], name=name or self.name)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_root(self) -> Node:
        return self._root

    def get_parent(self, node: Node) -> Optional[Node]:
        return node.parent

    def get_child(self, node: Node, index: int) -> Node:
        return node.children[index]

    def get_child_count(self, node: Node) -> int:
        return len(node.children)

    def get_node_height(self, node: Node) -> float:
        return node.height

    def get_node(self, number: int) -> Node:
        return self._nodes[number]

    def get_nodes(self) -> List[Node]:
        return list(self._nodes)

    def get_external_node(self, index: int) -> Node:
        return self._nodes[index]

    def get_internal_node(self, index: int) -> Node:
        return self._nodes[self._tip_count + index]

    def get_node_count(self) -> int:
        return len(self._nodes)

    def get_external_node_count(self) -> int:
        return sum(1 for node in self._nodes if node.is_external)

    def get_internal_node_count(self) -> int:
        return len(self._nodes) - self._tip_count

    def is_external(self, node: Node) -> bool:
        return node.is_external

    def is_root(self, node: Node) -> bool:
        return node is self._root

    def get_taxa(self) -> List[str]:
        return [node.taxon for node in self._nodes if node.is_external]

    def preorder(self) -> List[Node]:
        order = []
        stack = [self._root]
        while stack:
            node = stack.pop()
            order.append(node)
            stack.extend(reversed(node.children))
        return order

    @property
    def is_editing(self) -> bool:
        return self._editing

    def to_newick(self, lengths: bool = True) -> str:
        """Newick string with branch lengths (parent height minus child height)."""
        def write(node):
            if node.is_external:
                text = str(node.taxon)
            else:
                text = '(' + ','.join(write(child) for child in node.children) + ')'
            if lengths and node.parent is not None:
                text += ':%.10g' % (node.parent.height - node.height)
            return text
        return write(self._root) + ';'

    def topology_string(self) -> str:
        """Canonical topology without lengths; equal for trees that differ only in child order."""
        def write(node):
            if node.is_external:
                return str(node.taxon)
            return '(' + ','.join(sorted(write(child) for child in node.children)) + ')'
        return write(self._root)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: Callable[[TreeChangedEvent], None]) -> None:
        self._listeners.append(listener)

    def push_tree_changed_event(self, node: Optional[Node] = None,
                                kind: TreeChangeKind = TreeChangeKind.HEIGHT) -> None:
        """Queue an event while editing; deliver it at once otherwise."""
        event = TreeChangedEvent(node, kind)
        if self._editing:
            self._pending.append(event)
        else:
            self._fire([event])

    def _fire(self, events: Sequence[TreeChangedEvent]) -> None:
        for event in events:
            for listener in self._listeners:
                listener(event)

    # ------------------------------------------------------------------
    # Edit transactions
    # ------------------------------------------------------------------

    def edit(self) -> TreeEditGuard:
        return TreeEditGuard(self)

    def begin_edit(self) -> None:
        if self._editing:
            raise InvalidTreeState(f"{self.name}: edit already in progress")
        self._edit_snapshot = self._snapshot()
        self._pending = []
        self._structure_touched = False
        self._editing = True

    def end_edit(self) -> None:
        """Validate and commit the edit; an invalid tree is rolled back before raising."""
        self._require_edit('end_edit')
        try:
            self.check_tree_is_valid()
        except InvalidTreeState:
            self.rollback_edit()
            raise
        self._editing = False
        self._edit_snapshot = None
        self.last_edit_changed_topology = self._structure_touched
        if self._structure_touched:
            self.structure_version += 1
        events, self._pending = self._pending, []
        self._fire(events)

    def rollback_edit(self) -> None:
        self._require_edit('rollback_edit')
        self._apply(self._edit_snapshot)
        self._editing = False
        self._edit_snapshot = None
        self._pending = []

    def _require_edit(self, operation: str) -> None:
        if not self._editing:
            raise InvalidTreeState(f"{self.name}: {operation} called outside an edit")

    def remove_child(self, parent: Node, child: Node) -> None:
        self._require_edit('remove_child')
        if child.parent is not parent or child not in parent.children:
            raise InvalidTreeState(f"{self.name}: {child!r} is not a child of {parent!r}")
        parent.children.remove(child)
        child.parent = None
        self._structure_touched = True
        self._pending.append(TreeChangedEvent(parent, TreeChangeKind.STRUCTURE))

    def add_child(self, parent: Node, child: Node) -> None:
        self._require_edit('add_child')
        if child.parent is not None:
            raise InvalidTreeState(f"{self.name}: {child!r} already has parent {child.parent!r}")
        if parent.is_external and parent.number < self._tip_count:
            raise InvalidTreeState(f"{self.name}: cannot attach a child to tip {parent!r}")
        if len(parent.children) >= 2:
            raise InvalidTreeState(f"{self.name}: {parent!r} already has two children")
        parent.children.append(child)
        child.parent = parent
        self._structure_touched = True
        self._pending.append(TreeChangedEvent(parent, TreeChangeKind.STRUCTURE))

    def set_root(self, node: Node) -> None:
        self._require_edit('set_root')
        self._root = node
        self._structure_touched = True
        self._pending.append(TreeChangedEvent(node, TreeChangeKind.STRUCTURE))

    def set_node_height(self, node: Node, height: float) -> None:
        """Set a height; inside an edit it is validated at commit, outside it must be finite and >= 0."""
        if not self._editing and not (np.isfinite(height) and height >= 0):
            raise InvalidTreeState(f"{self.name}: invalid height {height} for {node!r}")
        node.height = float(height)
        self.push_tree_changed_event(node, TreeChangeKind.HEIGHT)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _snapshot(self) -> _Snapshot:
        return (
            self._root.number,
            tuple(
                (node.parent.number if node.parent is not None else -1,
                 tuple(child.number for child in node.children),
                 node.height)
                for node in self._nodes
            ),
        )

    def _apply(self, snapshot: _Snapshot) -> None:
        root_number, entries = snapshot
        for node, (parent, children, height) in zip(self._nodes, entries):
            node.parent = self._nodes[parent] if parent >= 0 else None
            node.children = [self._nodes[c] for c in children]
            node.height = height
        self._root = self._nodes[root_number]

    def store_state(self) -> None:
        if self._editing:
            raise InvalidTreeState(f"{self.name}: cannot store state during an edit")
        self._stored = self._snapshot()

    def restore_state(self) -> None:
        if self._editing:
            raise InvalidTreeState(f"{self.name}: cannot restore state during an edit")
        self._apply(self._stored)
        self.structure_version += 1
        self._fire([TreeChangedEvent(None, TreeChangeKind.RESTORED)])

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def check_tree_is_valid(self) -> None:
        """
        Check every structural and height invariant.

        Raises:
            InvalidTreeState: Listing every violation found
        """
        errors = []
        root = self._root
        if root.parent is not None:
            errors.append(f"root {root!r} has a parent")

        seen: Dict[int, Node] = {}
        stack = [root]
        while stack:
            node = stack.pop()
            if node.number in seen:
                errors.append(f"{node!r} reached twice (cycle or shared child)")
                continue
            seen[node.number] = node
            if not np.isfinite(node.height) or node.height < 0:
                errors.append(f"{node!r} has invalid height {node.height}")
            if node.is_external:
                if node.number >= self._tip_count:
                    errors.append(f"internal node {node!r} has no children")
            elif len(node.children) != 2:
                errors.append(f"{node!r} has {len(node.children)} children")
            for child in node.children:
                if child.parent is not node:
                    errors.append(f"{child!r} does not point back to parent {node!r}")
                if child.height > node.height:
                    errors.append(f"{child!r} is older than its parent {node!r}")
                stack.append(child)
            if len(errors) > 20:
                break

        if len(seen) != len(self._nodes) and len(errors) <= 20:
            errors.append(f"{len(self._nodes) - len(seen)} node(s) unreachable from the root")

        tips = [node for node in seen.values() if node.is_external]
        if len(tips) != self._tip_count:
            errors.append(f"tip count changed from {self._tip_count} to {len(tips)}")
        elif frozenset(node.taxon for node in tips) != self._taxa:
            errors.append("set of tip taxa changed")

        if errors:
            raise InvalidTreeState(f"Invalid tree '{self.name}':\n  " + "\n  ".join(errors))


class NodeHeightParameter:
    """
    Parameter view over the internal node heights of a tree, in pre-order.

    Bounds are live: coordinate i may move between the height of its oldest
    child and the height of its parent (unbounded above for the root).
    Updating coordinates in pre-order therefore always keeps the tree valid,
    which is the order the Hamiltonian integrators use.
    """

    def __init__(self, tree: TreeState, name: Optional[str] = None):
        self.tree = tree
        self.name = name or f"{tree.name}.heights"
        self._version = None
        self._order: List[Node] = []

    def _nodes(self) -> List[Node]:
        if self._version != self.tree.structure_version:
            self._order = [node for node in self.tree.preorder() if not node.is_external]
            self._version = self.tree.structure_version
        return self._order

    def get_dimension(self) -> int:
        return self.tree.get_internal_node_count()

    def get_value(self, i: int) -> float:
        return self._nodes()[i].height

    def get_values(self) -> np.ndarray:
        return np.array([node.height for node in self._nodes()])

    def get_bounds_of(self, i: int) -> Tuple[float, float]:
        node = self._nodes()[i]
        lower = max(child.height for child in node.children)
        upper = node.parent.height if node.parent is not None else np.inf
        return lower, upper

    def get_bounds(self) -> Bounds:
        limits = [self.get_bounds_of(i) for i in range(self.get_dimension())]
        return Bounds(np.array([lo for lo, _ in limits]), np.array([hi for _, hi in limits]))

    def set_value(self, i: int, value: float) -> None:
        lower, upper = self.get_bounds_of(i)
        if not lower <= value <= upper:
            raise ValueError(f"{self.name}[{i}] = {value} lies outside [{lower}, {upper}]")
        self.tree.set_node_height(self._nodes()[i], value)

    def set_values(self, values: Sequence[float]) -> None:
        values = np.asarray(values, dtype=float)
        nodes = self._nodes()
        if values.shape != (len(nodes),):
            raise ValueError(f"{self.name}: expected {len(nodes)} values, got {values.shape}")
        with self.tree.edit():
            for node, value in zip(nodes, values):
                self.tree.set_node_height(node, value)

    def locate(self, i: int):
        return self, i

    def store_values(self) -> None:
        self.tree.store_state()

    def restore_values(self) -> None:
        self.tree.restore_state()

    def add_listener(self, listener: Callable) -> None:
        self.tree.add_listener(lambda event: listener(self, -1))


class _NewickParser:
    """Recursive-descent Newick reader producing (label, length, children) tuples."""

    def __init__(self, text: str):
        self.text = ''.join(text.split())
        self.pos = 0

    def parse(self):
        entry = self._subtree()
        if self.pos < len(self.text) and self.text[self.pos] == ';':
            self.pos += 1
        if self.pos != len(self.text):
            raise ValueError(f"Unexpected Newick text at position {self.pos}: {self.text[self.pos:]!r}")
        return entry

    def _peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ''

    def _subtree(self):
        children = []
        if self._peek() == '(':
            self.pos += 1
            children.append(self._subtree())
            while self._peek() == ',':
                self.pos += 1
                children.append(self._subtree())
            if self._peek() != ')':
                raise ValueError(f"Expected ')' at position {self.pos} in Newick string")
            self.pos += 1
        label = self._token()
        length = 1.0
        if self._peek() == ':':
            self.pos += 1
            length = float(self._token())
        if not children and not label:
            raise ValueError(f"Tip without a label at position {self.pos} in Newick string")
        return label, length, children

    def _token(self) -> str:
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos] not in '(),:;':
            self.pos += 1
        return self.text[start:self.pos]
