"""Link graph data model.

A Node is the record of one distinct (normalized) URL. It is created the
first time the URL is seen and, once fetched, carries the response metadata.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class ResponseData:
    """Metadata of a completed HTTP response."""
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    content_length: int = 0
    duration: float = 0.0

    @classmethod
    def from_response(cls, response) -> "ResponseData":
        """Build from a fetch engine response (see ``inquire.net.fetch_engine``)."""
        return cls(
            status_code=response.status_code,
            headers=dict(response.headers),
            content_length=response.content_length,
            duration=response.duration,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status_code": self.status_code,
            "headers": dict(self.headers),
            "content_length": self.content_length,
            "duration": round(self.duration, 6),
        }


@dataclass(eq=False)
class Node:
    """One distinct URL in the link graph.

    Nodes are owned by a Recorder; only the Recorder mutates them.
    A Node without ``response`` has been discovered but not fetched.
    """
    id: int
    url: str
    response: Optional[ResponseData] = None
    error: Optional[str] = None

    @property
    def fetched(self) -> bool:
        return self.response is not None

    def record(self, response: Optional[ResponseData], error: Optional[str]) -> bool:
        """Attach response data unless some is already present.

        Returns True if the node changed.
        """
        if self.response is not None:
            return False
        if response is not None:
            self.response = response
            self.error = error
            return True
        if error is not None:
            self.error = error
            return True
        return False

    def view(self, links: Tuple[int, ...] = ()) -> "NodeView":
        return NodeView(
            id=self.id,
            url=self.url,
            response=self.response,
            error=self.error,
            links=links,
        )


@dataclass(frozen=True)
class NodeView:
    """Immutable snapshot of a Node, safe to hand to status readers."""
    id: int
    url: str
    response: Optional[ResponseData] = None
    error: Optional[str] = None
    links: Tuple[int, ...] = ()

    @property
    def fetched(self) -> bool:
        return self.response is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "fetched": self.fetched,
            "response": self.response.to_dict() if self.response else None,
            "error": self.error,
            "links": list(self.links),
        }
