"""
Filter compiler: typed filter tree -> joins + predicate fragments + parameters.

Placeholders are numbered (`?1`, `?2`, ...) and issued by `CompiledQuery.bind`,
so a fragment's placeholders always index the shared parameter list no matter
how many other fragments, tenant predicates or facet clauses are appended
around it later.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from ...adapters.db.functions import like_prefix
from ...config import SEARCH_FUZZY_THRESHOLD, SEARCH_STRICT_FILTERS
from ...shared import get_logger
from .filters import Filter, FilterGroup, FilterLeaf, FilterValidationError, Logic, Operator
from .registry import FIELD_REGISTRY, TAG_RELATION, FieldRegistry, FieldRegistryEntry

logger = get_logger(__name__)

_SCALARS = (str, int, float, bool)
# SQLite INTEGER range; larger ints cannot be bound.
_INT_MIN, _INT_MAX = -(2**63), 2**63 - 1

_TAG_MATCH = (
    "FROM asset_tags atg JOIN tags tg ON tg.id = atg.tag_id "
    "WHERE atg.asset_id = a.id AND tg.name IN (SELECT value FROM json_each({ph}))"
)


@dataclass
class CompiledQuery:
    """
    Joins, predicate fragments and bound values, kept in lockstep.

    `joins` is insertion-ordered and unique by exact clause text.
    `predicates` are ANDed together by `where_sql()`.
    """

    joins: List[str] = field(default_factory=list)
    predicates: List[str] = field(default_factory=list)
    parameters: List[Any] = field(default_factory=list)
    ignored: List[Tuple[str, str, str]] = field(default_factory=list)

    def bind(self, value: Any) -> str:
        """Append one parameter and return the placeholder that refers to it."""
        self.parameters.append(value)
        return f"?{len(self.parameters)}"

    def add_join(self, join: Optional[str]) -> None:
        if join and join not in self.joins:
            self.joins.append(join)

    def add_predicate(self, fragment: Optional[str]) -> None:
        if fragment:
            self.predicates.append(fragment)

    def copy(self) -> "CompiledQuery":
        return CompiledQuery(
            joins=list(self.joins),
            predicates=list(self.predicates),
            parameters=list(self.parameters),
            ignored=list(self.ignored),
        )

    def join_sql(self) -> str:
        return "\n".join(self.joins)

    def where_sql(self) -> str:
        if not self.predicates:
            return ""
        return "WHERE " + " AND ".join(self.predicates)

    def bound_parameters(self) -> Tuple[Any, ...]:
        """Parameters ready for the driver; array values travel as JSON text for json_each()."""
        return tuple(json.dumps(v) if isinstance(v, (list, tuple)) else v for v in self.parameters)


def _is_scalar(value: Any) -> bool:
    if isinstance(value, int) and not isinstance(value, bool):
        return _INT_MIN <= value <= _INT_MAX
    return isinstance(value, _SCALARS)


def _scalar_list(value: Any) -> Optional[List[Any]]:
    """Non-null members of an array value; None when the array is empty or holds a non-scalar."""
    if not isinstance(value, (list, tuple)):
        return None
    members = [v for v in value if v is not None]
    if not members or not all(_is_scalar(v) for v in members):
        return None
    return members


class QueryCompiler:
    """
    Compiles filter trees against a field registry.

    With `strict=False` (the default) leaves naming an unknown field, a
    disallowed operator or an unusable value compile to nothing and are
    recorded in `CompiledQuery.ignored`. With `strict=True` they raise
    `FilterValidationError`.
    """

    def __init__(
        self,
        registry: FieldRegistry = FIELD_REGISTRY,
        *,
        strict: bool = SEARCH_STRICT_FILTERS,
        fuzzy_threshold: float = SEARCH_FUZZY_THRESHOLD,
    ):
        self.registry = registry
        self.strict = bool(strict)
        self.fuzzy_threshold = float(fuzzy_threshold)

    def compile(self, node: Optional[Filter], into: Optional[CompiledQuery] = None) -> CompiledQuery:
        out = into if into is not None else CompiledQuery()
        if node is None:
            return out
        for fragment in self._conjuncts(node, out):
            out.add_predicate(fragment)
        if out.ignored:
            logger.debug("Ignored %d filter leaf(s): %s", len(out.ignored), out.ignored)
        return out

    def _conjuncts(self, node: Filter, out: CompiledQuery) -> List[str]:
        """Fragments whose conjunction is equivalent to `node` (empty list = no constraint)."""
        if isinstance(node, FilterLeaf):
            return self._compile_leaf(node, out)
        if not isinstance(node, FilterGroup):
            self._ignore(out, "?", "?", f"unsupported node type {type(node).__name__}")
            return []
        if node.logic == Logic.AND:
            parts: List[str] = []
            for child in node.children:
                parts.extend(self._conjuncts(child, out))
            return parts
        fragments = [f for f in (self._fragment(child, out) for child in node.children) if f]
        if len(fragments) > 1:
            return ["(" + " OR ".join(fragments) + ")"]
        return fragments

    def _fragment(self, node: Filter, out: CompiledQuery) -> str:
        parts = self._conjuncts(node, out)
        if len(parts) > 1:
            return "(" + " AND ".join(parts) + ")"
        return parts[0] if parts else ""

    def _ignore(self, out: CompiledQuery, field_name: str, op: str, reason: str) -> List[str]:
        if self.strict:
            raise FilterValidationError(f"{field_name} {op}: {reason}")
        out.ignored.append((field_name, op, reason))
        return []

    def _compile_leaf(self, leaf: FilterLeaf, out: CompiledQuery) -> List[str]:
        op_name = leaf.op.value if isinstance(leaf.op, Operator) else str(leaf.op)
        entry = self.registry.resolve(leaf.field)
        if entry is None:
            return self._ignore(out, leaf.field, op_name, "unknown field")
        if not isinstance(leaf.op, Operator) or not entry.allows(leaf.op):
            return self._ignore(out, leaf.field, op_name, "operator not allowed")

        out.add_join(entry.required_join)
        handler = _LEAF_HANDLERS[leaf.op]
        parts = handler(self, entry, leaf.value, out)
        if not parts:
            return self._ignore(out, leaf.field, op_name, "unusable value")
        return parts

    def _eq(self, entry: FieldRegistryEntry, value: Any, out: CompiledQuery) -> List[str]:
        if not _is_scalar(value):
            return []
        return [f"{entry.physical_expression} = {out.bind(value)}"]

    def _in(self, entry: FieldRegistryEntry, value: Any, out: CompiledQuery) -> List[str]:
        values = _scalar_list(value)
        if values is None:
            return []
        return [f"{entry.physical_expression} IN (SELECT value FROM json_each({out.bind(values)}))"]

    def _range(self, entry: FieldRegistryEntry, value: Any, out: CompiledQuery) -> List[str]:
        if not isinstance(value, (list, tuple)) or len(value) > 2:
            return []
        low = value[0] if len(value) > 0 else None
        high = value[1] if len(value) > 1 else None
        parts: List[str] = []
        if _is_scalar(low):
            parts.append(f"{entry.physical_expression} >= {out.bind(low)}")
        if _is_scalar(high):
            parts.append(f"{entry.physical_expression} <= {out.bind(high)}")
        return parts

    def _exists(self, entry: FieldRegistryEntry, _value: Any, _out: CompiledQuery) -> List[str]:
        return [f"{entry.physical_expression} IS NOT NULL"]

    def _prefix(self, entry: FieldRegistryEntry, value: Any, out: CompiledQuery) -> List[str]:
        if not _is_scalar(value) or isinstance(value, bool) or str(value) == "":
            return []
        pattern = like_prefix(str(value))
        return [f"afm_fold({entry.physical_expression}) LIKE {out.bind(pattern)} ESCAPE '\\'"]

    def _fuzzy(self, entry: FieldRegistryEntry, value: Any, out: CompiledQuery) -> List[str]:
        if not isinstance(value, str) or not value.strip():
            return []
        threshold = f"{self.fuzzy_threshold:.4f}"
        return [f"afm_similarity({entry.physical_expression}, {out.bind(value.strip())}) >= {threshold}"]

    def _contains_any(self, entry: FieldRegistryEntry, value: Any, out: CompiledQuery) -> List[str]:
        values = _scalar_list(value)
        if values is None or entry.physical_expression != TAG_RELATION:
            return []
        return [f"EXISTS (SELECT 1 {_TAG_MATCH.format(ph=out.bind(values))})"]

    def _contains_all(self, entry: FieldRegistryEntry, value: Any, out: CompiledQuery) -> List[str]:
        # Compared against the requested length: duplicates or nulls in the list make the leaf unsatisfiable.
        values = _scalar_list(value)
        if values is None or entry.physical_expression != TAG_RELATION:
            return []
        subquery = f"SELECT COUNT(DISTINCT tg.name) {_TAG_MATCH.format(ph=out.bind(values))}"
        return [f"({subquery}) = {int(len(value))}"]


_LEAF_HANDLERS = {
    Operator.EQ: QueryCompiler._eq,
    Operator.IN: QueryCompiler._in,
    Operator.RANGE: QueryCompiler._range,
    Operator.EXISTS: QueryCompiler._exists,
    Operator.PREFIX: QueryCompiler._prefix,
    Operator.FUZZY: QueryCompiler._fuzzy,
    Operator.CONTAINS_ANY: QueryCompiler._contains_any,
    Operator.CONTAINS_ALL: QueryCompiler._contains_all,
}


def compile_filters(
    node: Optional[Filter],
    *,
    registry: Optional[FieldRegistry] = None,
    strict: bool = False,
    into: Optional[CompiledQuery] = None,
) -> CompiledQuery:
    """Compile `node` with a throwaway compiler (permissive unless `strict`)."""
    return QueryCompiler(registry or FIELD_REGISTRY, strict=strict).compile(node, into=into)
