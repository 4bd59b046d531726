"""NFT metadata document in the common marketplace JSON shape."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class NFTAttribute:
    trait_type: str
    value: str


@dataclass(frozen=True)
class NFTMetadata:
    """Name, description, image and ordered traits of an attendance NFT."""

    name: str
    description: str
    image: str
    attributes: tuple[NFTAttribute, ...] = field(default_factory=tuple)
    external_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "image": self.image,
            "attributes": [
                {"trait_type": a.trait_type, "value": a.value} for a in self.attributes
            ],
        }
        if self.external_url:
            data["external_url"] = self.external_url
        return data

    def to_json(self) -> str:
        # Key order is fixed by to_dict(); no whitespace so equal metadata
        # always encodes to identical bytes.
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    def trait(self, trait_type: str) -> str | None:
        for attr in self.attributes:
            if attr.trait_type == trait_type:
                return attr.value
        return None
