"""Typed view over the JSON schemas stored on ``forms.fields``.

Stored schemas come in several envelopes and nest conditional fields under
``dependencies``. ``parse_form_schema`` turns any of those envelopes into a
small AST, and ``FieldPageVisitor`` walks it to map every ``fieldId`` to the
page it is rendered on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional

from .defaults import DEFAULTS, Defaults

BRANCH_KEYWORDS = ("oneOf", "allOf", "anyOf")


@dataclass
class SchemaBranch:
    """One entry under ``dependencies``: a set of property groups."""

    groups: List[Dict[str, "FieldNode"]] = field(default_factory=list)


@dataclass
class FieldNode:
    key: str
    field_id: Optional[str] = None
    title: Optional[str] = None
    dependencies: List[SchemaBranch] = field(default_factory=list)


@dataclass
class PageSchema:
    key: str
    properties: Dict[str, FieldNode] = field(default_factory=dict)
    dependencies: List[SchemaBranch] = field(default_factory=list)


@dataclass
class FormSchema:
    pages: List[PageSchema] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.pages


def _locate_pages(raw: Any) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        if isinstance(raw, list):
            return _search_properties(raw) or {}
        return {}
    result = raw.get("result")
    if isinstance(result, list) and result:
        first = result[0]
        if isinstance(first, Mapping):
            schema = first.get("schema")
            if isinstance(schema, Mapping) and isinstance(schema.get("properties"), Mapping):
                return schema["properties"]
    schema = raw.get("schema")
    if isinstance(schema, Mapping) and isinstance(schema.get("properties"), Mapping):
        return schema["properties"]
    if isinstance(raw.get("properties"), Mapping):
        return raw["properties"]
    return _search_properties(raw) or {}


def _search_properties(node: Any) -> Optional[Mapping[str, Any]]:
    """Depth-first search for the first ``schema.properties`` or ``properties`` mapping."""
    stack: List[Any] = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, Mapping):
            schema = current.get("schema")
            if isinstance(schema, Mapping) and isinstance(schema.get("properties"), Mapping):
                return schema["properties"]
            if isinstance(current.get("properties"), Mapping):
                return current["properties"]
            stack.extend(reversed(list(current.values())))
        elif isinstance(current, list):
            stack.extend(reversed(current))
    return None


def _parse_properties(raw: Any) -> Dict[str, FieldNode]:
    nodes: Dict[str, FieldNode] = {}
    if not isinstance(raw, Mapping):
        return nodes
    for key, value in raw.items():
        if not isinstance(value, Mapping):
            continue
        field_id = value.get("fieldId")
        nodes[str(key)] = FieldNode(
            key=str(key),
            field_id=str(field_id) if field_id else None,
            title=value.get("title"),
            dependencies=_parse_dependencies(value.get("dependencies")),
        )
    return nodes


def _parse_dependencies(raw: Any) -> List[SchemaBranch]:
    branches: List[SchemaBranch] = []
    if not isinstance(raw, Mapping):
        return branches
    for dependency in raw.values():
        if not isinstance(dependency, Mapping):
            continue
        branch = SchemaBranch()
        for keyword in BRANCH_KEYWORDS:
            options = dependency.get(keyword)
            if not isinstance(options, list):
                continue
            for option in options:
                if isinstance(option, Mapping) and option.get("properties"):
                    branch.groups.append(_parse_properties(option["properties"]))
        if isinstance(dependency.get("properties"), Mapping):
            branch.groups.append(_parse_properties(dependency["properties"]))
        if branch.groups:
            branches.append(branch)
    return branches


def parse_form_schema(raw: Any) -> FormSchema:
    """Build a FormSchema from any of the stored envelopes; unknown shapes yield an empty schema."""
    pages: List[PageSchema] = []
    for key, value in _locate_pages(raw).items():
        if not isinstance(value, Mapping):
            continue
        pages.append(
            PageSchema(
                key=str(key),
                properties=_parse_properties(value.get("properties")),
                dependencies=_parse_dependencies(value.get("dependencies")),
            )
        )
    return FormSchema(pages=pages)


class FieldPageVisitor:
    """Collects ``fieldId -> page name`` for every field reachable from each page."""

    def __init__(self, defaults: Defaults = DEFAULTS) -> None:
        self._defaults = defaults

    def visit(self, schema: FormSchema) -> Dict[str, str]:
        mapping: Dict[str, str] = {}
        for page in schema.pages:
            page_name = self._defaults.page_name(page.key)
            for field_id in self._walk_page(page):
                mapping[field_id] = page_name
        return mapping

    def page_names(self, schema: FormSchema) -> List[str]:
        return [self._defaults.page_name(page.key) for page in schema.pages]

    def _walk_page(self, page: PageSchema) -> Iterator[str]:
        yield from self._walk_properties(page.properties)
        yield from self._walk_branches(page.dependencies)

    def _walk_properties(self, properties: Dict[str, FieldNode]) -> Iterator[str]:
        for node in properties.values():
            if node.field_id:
                yield node.field_id
            yield from self._walk_branches(node.dependencies)

    def _walk_branches(self, branches: List[SchemaBranch]) -> Iterator[str]:
        for branch in branches:
            for group in branch.groups:
                yield from self._walk_properties(group)


def field_page_map(raw: Any, defaults: Defaults = DEFAULTS) -> Dict[str, str]:
    return FieldPageVisitor(defaults).visit(parse_form_schema(raw))


def schema_field_ids(raw: Any) -> List[str]:
    return list(field_page_map(raw))


__all__ = [
    "FieldNode",
    "FieldPageVisitor",
    "FormSchema",
    "PageSchema",
    "SchemaBranch",
    "field_page_map",
    "parse_form_schema",
    "schema_field_ids",
]
