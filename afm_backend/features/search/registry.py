"""
Field registry: the allow-list of filterable fields.

A field that is not listed here cannot be searched, and an operator that is
not listed for a field is never compiled. Physical expressions and join
clauses are constants of this module; nothing from a request is ever pasted
into SQL.
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import FrozenSet, Iterable, Iterator, Mapping, Optional

from .filters import Operator

BUSINESS_JOIN = "LEFT JOIN asset_business ab ON ab.asset_id = a.id"
MEDIA_JOIN = "LEFT JOIN asset_media am ON am.asset_id = a.id"
# One row per asset: the first uploaded file.
PRIMARY_FILE_JOIN = (
    "LEFT JOIN asset_files af ON af.id = "
    "(SELECT MIN(af2.id) FROM asset_files af2 WHERE af2.asset_id = a.id)"
)

# Marker expression for fields compiled as correlated subqueries over the tag relation.
TAG_RELATION = "tags"

EQ, IN, RANGE, EXISTS = Operator.EQ, Operator.IN, Operator.RANGE, Operator.EXISTS
PREFIX, FUZZY = Operator.PREFIX, Operator.FUZZY
CONTAINS_ANY, CONTAINS_ALL = Operator.CONTAINS_ANY, Operator.CONTAINS_ALL


@dataclass(frozen=True)
class FieldRegistryEntry:
    public_name: str
    physical_expression: str
    required_join: Optional[str]
    allowed_operators: FrozenSet[Operator]

    def allows(self, op: Operator) -> bool:
        return op in self.allowed_operators


def _entry(name: str, expression: str, ops: Iterable[Operator], join: Optional[str] = None) -> FieldRegistryEntry:
    return FieldRegistryEntry(name, expression, join, frozenset(ops))


class FieldRegistry:
    """Read-only lookup from public field name to registry entry."""

    def __init__(self, entries: Iterable[FieldRegistryEntry]):
        table = {}
        for entry in entries:
            if entry.public_name in table:
                raise ValueError(f"duplicate registry field: {entry.public_name}")
            table[entry.public_name] = entry
        self._entries: Mapping[str, FieldRegistryEntry] = MappingProxyType(table)

    def resolve(self, field_name: str) -> Optional[FieldRegistryEntry]:
        return self._entries.get(field_name)

    def names(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, field_name: object) -> bool:
        return field_name in self._entries

    def __iter__(self) -> Iterator[FieldRegistryEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


FIELD_REGISTRY = FieldRegistry(
    [
        _entry("id", "a.id", (EQ, IN, RANGE)),
        _entry("type", "a.type", (EQ, IN)),
        _entry("title", "a.title", (EQ, FUZZY, PREFIX)),
        _entry("description", "a.description", (EXISTS, FUZZY)),
        _entry("status", "a.status", (EQ, IN)),
        _entry("createdAt", "a.created_at", (RANGE,)),
        _entry("capturedAt", "a.captured_at", (RANGE, EXISTS)),
        _entry("rating", "a.rating", (RANGE, EQ)),
        _entry("ownerId", "a.owner_id", (EQ, IN)),
        _entry("teamId", "a.team_id", (EQ,)),
        _entry("visibility", "a.visibility", (EQ, IN)),
        _entry("folderId", "a.folder_id", (EQ, IN)),
        _entry("campaignId", "ab.campaign_id", (EQ, IN), BUSINESS_JOIN),
        _entry("channel", "ab.channel", (EQ, IN), BUSINESS_JOIN),
        _entry("brand", "ab.brand", (EQ, IN, FUZZY, PREFIX), BUSINESS_JOIN),
        _entry("region", "ab.region", (EQ, IN), BUSINESS_JOIN),
        _entry("language", "COALESCE(a.language, ab.language)", (EQ, IN), BUSINESS_JOIN),
        _entry("width", "am.width", (RANGE,), MEDIA_JOIN),
        _entry("height", "am.height", (RANGE,), MEDIA_JOIN),
        _entry("orientation", "am.orientation", (EQ, IN), MEDIA_JOIN),
        _entry("durationSec", "am.duration_sec", (RANGE,), MEDIA_JOIN),
        _entry("fps", "am.fps", (RANGE,), MEDIA_JOIN),
        _entry("videoCodec", "am.video_codec", (EQ, IN), MEDIA_JOIN),
        _entry("audioCodec", "am.audio_codec", (EQ, IN), MEDIA_JOIN),
        _entry("aspectRatio", "am.aspect_ratio", (EQ, IN), MEDIA_JOIN),
        _entry("sizeBytes", "af.size_bytes", (RANGE,), PRIMARY_FILE_JOIN),
        _entry("mimeType", "af.mime_type", (EQ, IN, PREFIX), PRIMARY_FILE_JOIN),
        _entry("tags", TAG_RELATION, (CONTAINS_ANY, CONTAINS_ALL)),
    ]
)


def resolve(field_name: str) -> Optional[FieldRegistryEntry]:
    """Look up a field in the default registry."""
    return FIELD_REGISTRY.resolve(field_name)
