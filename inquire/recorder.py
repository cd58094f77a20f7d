"""Concurrency-safe link graph recorder.

Stores one Node per distinct URL and the directed edges between them.
Nodes live in an arena (a list indexed by node id) and a dict maps each URL
key to its index, so ids are dense and stable for the whole crawl run.
"""

import logging
import threading
from typing import Dict, List, Optional, Set, Tuple

from .errors import InvariantError
from .node import Node, NodeView, ResponseData

logger = logging.getLogger(__name__)


class Recorder:
    """Records fetch results and discovered links as a directed graph.

    Every method holds a single lock for the whole lookup-or-create-and-mutate
    sequence. Critical sections are plain dict/set operations; logging happens
    after the lock is released.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._nodes: List[Node] = []
        self._index: Dict[str, int] = {}
        self._children: Dict[int, Set[int]] = {}
        self._edge_count = 0

    def _node_for(self, url: str) -> Tuple[Node, bool]:
        """Look up or create the node for ``url``. Caller holds the lock."""
        idx = self._index.get(url)
        if idx is not None:
            if idx >= len(self._nodes):
                raise InvariantError(f"URL {url} maps to unknown node id {idx}")
            node = self._nodes[idx]
            if node.url != url:
                raise InvariantError(
                    f"URL {url} maps to node {idx} recorded for {node.url}"
                )
            return node, False

        node = Node(id=len(self._nodes), url=url)
        self._nodes.append(node)
        self._index[url] = node.id
        return node, True

    def _check_owned(self, node: Node) -> None:
        if node.id >= len(self._nodes) or self._nodes[node.id] is not node:
            raise InvariantError(f"Node {node.id} ({node.url}) is not owned by this recorder")

    def record_response(
        self,
        url: str,
        response: Optional[ResponseData],
        error: Optional[str] = None,
    ) -> Node:
        """Create (or update) the node for a fetched URL.

        Response data is attached only while the node has none, so the first
        recorded response always wins. The error is kept even when there is
        no response at all.
        """
        with self._lock:
            node, created = self._node_for(url)
            changed = node.record(response, error)

        if error is not None:
            logger.debug(f"Recorded failed fetch for {url} (node {node.id}): {error}")
        elif changed:
            logger.debug(f"Recorded response for {url} (node {node.id}, created={created})")
        else:
            logger.debug(f"Response for {url} already recorded, keeping the first one")
        return node

    def record_link(self, parent: Node, child_url: str) -> Node:
        """Create (or look up) the node for ``child_url`` and link ``parent`` to it.

        Self-links never produce an edge; re-adding an edge is a no-op.
        """
        added = False
        with self._lock:
            self._check_owned(parent)
            child, _ = self._node_for(child_url)
            if parent.id != child.id:
                children = self._children.setdefault(parent.id, set())
                if child.id not in children:
                    children.add(child.id)
                    self._edge_count += 1
                    added = True

        if added:
            logger.debug(f"Recorded link {parent.url} --> {child_url}")
        return child

    def nodes(self) -> List[NodeView]:
        """Snapshot of all nodes, newest first (descending id)."""
        with self._lock:
            return [
                node.view(tuple(sorted(self._children.get(node.id, ()))))
                for node in reversed(self._nodes)
            ]

    def get(self, url: str) -> Optional[NodeView]:
        with self._lock:
            idx = self._index.get(url)
            if idx is None:
                return None
            node = self._nodes[idx]
            return node.view(tuple(sorted(self._children.get(idx, ()))))

    def children(self, node_id: int) -> List[int]:
        with self._lock:
            return sorted(self._children.get(node_id, ()))

    def edges(self) -> List[Tuple[int, int]]:
        """All (parent id, child id) pairs, sorted."""
        with self._lock:
            return sorted(
                (parent, child)
                for parent, children in self._children.items()
                for child in children
            )

    @property
    def edge_count(self) -> int:
        with self._lock:
            return self._edge_count

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)
