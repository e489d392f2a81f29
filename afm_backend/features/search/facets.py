"""
Facet table: which fields can be aggregated and how to reach their values.

Facet joins may fan out (one row per tag); they are only ever added to the
facet query's own copy of the join set, never to the listing/count joins.
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from .registry import BUSINESS_JOIN, MEDIA_JOIN, PRIMARY_FILE_JOIN

TAG_JOINS = (
    "JOIN asset_tags fat ON fat.asset_id = a.id",
    "JOIN tags ft ON ft.id = fat.tag_id",
)


@dataclass(frozen=True)
class FacetField:
    name: str
    value_expression: str
    joins: Tuple[str, ...] = ()


FACET_REGISTRY: Mapping[str, FacetField] = MappingProxyType(
    {
        f.name: f
        for f in (
            FacetField("tags", "ft.name", TAG_JOINS),
            FacetField("channel", "ab.channel", (BUSINESS_JOIN,)),
            FacetField("brand", "ab.brand", (BUSINESS_JOIN,)),
            FacetField("region", "ab.region", (BUSINESS_JOIN,)),
            FacetField("language", "COALESCE(a.language, ab.language)", (BUSINESS_JOIN,)),
            FacetField("type", "a.type"),
            FacetField("status", "a.status"),
            FacetField("orientation", "am.orientation", (MEDIA_JOIN,)),
            FacetField("videoCodec", "am.video_codec", (MEDIA_JOIN,)),
            FacetField("mimeType", "af.mime_type", (PRIMARY_FILE_JOIN,)),
        )
    }
)


def resolve_facet(name: str) -> Optional[FacetField]:
    return FACET_REGISTRY.get(name)
