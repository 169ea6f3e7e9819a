"""Code unit model shared by splitters, the cache, and the live redefiner."""

import base64
from dataclasses import dataclass, replace
from typing import Any, Optional


@dataclass(frozen=True)
class CodeUnit:
    """
    One independently swappable block of code extracted from a container entry.

    Attributes:
        name: Qualified name, unique within the owning entry (e.g. "app.views.Home")
        entry: Name of the archive entry the unit was extracted from
        checksum: CRC-32 of the unit payload
        payload: Unit bytes, or None when the splitter did not retain code
    """
    name: str
    entry: str
    checksum: int
    payload: Optional[bytes] = None

    def without_payload(self) -> 'CodeUnit':
        if self.payload is None:
            return self
        return replace(self, payload=None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "entry": self.entry,
            "checksum": self.checksum,
            "payload": base64.b64encode(self.payload).decode('ascii') if self.payload is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'CodeUnit':
        payload = data.get("payload")
        return cls(
            name=data["name"],
            entry=data["entry"],
            checksum=int(data["checksum"]),
            payload=base64.b64decode(payload) if payload is not None else None,
        )
