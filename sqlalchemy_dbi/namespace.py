"""Compiled namespace templates.

A result's segment declarations are compiled once into a
:class:`.Namespace` made of frozen static elements and unbound
placeholder elements.  Each collection cycle copies the template and
binds the placeholders to the values of a row.

"""
from __future__ import annotations

from typing import Iterator
from typing import List
from typing import Optional
from typing import Sequence
from typing import Tuple
from typing import Union

from . import config

PLACEHOLDER = "*"

PlaceholderSegment = Union[
    config.DynamicSegment, config.ExpandSegment, config.ConnectionSegment
]


class NamespaceElement:
    __slots__ = "value", "name", "description", "segment", "index"

    value: str
    segment: Optional[PlaceholderSegment]

    def __init__(
        self,
        value: str,
        name: str = "",
        description: str = "",
        segment: Optional[PlaceholderSegment] = None,
        index: int = 0,
    ):
        self.value = value
        self.name = name
        self.description = description
        self.segment = segment
        self.index = index

    @property
    def is_dynamic(self) -> bool:
        return self.segment is not None

    @property
    def kind(self) -> str:
        return self.segment.kind if self.segment is not None else "static"

    def copy(self) -> NamespaceElement:
        return NamespaceElement(
            self.value,
            self.name,
            self.description,
            self.segment,
            self.index,
        )

    def __eq__(self, other):
        if not isinstance(other, NamespaceElement):
            return False
        return [getattr(self, k) for k in self.__slots__] == [
            getattr(other, k) for k in self.__slots__
        ]

    def __repr__(self):
        return "NamespaceElement(%r, name=%r, kind=%r)" % (
            self.value,
            self.name,
            self.kind,
        )


class Namespace:
    """An ordered path of :class:`.NamespaceElement` objects."""

    __slots__ = ("elements",)

    elements: List[NamespaceElement]

    def __init__(self, elements: Sequence[NamespaceElement] = ()):
        self.elements = list(elements)

    @classmethod
    def from_prefix(cls, prefix: Sequence[str]) -> Namespace:
        return cls(
            NamespaceElement(value, index=idx)
            for idx, value in enumerate(prefix)
        )

    def add_static_element(self, value: str) -> Namespace:
        self.elements.append(
            NamespaceElement(value, index=len(self.elements))
        )
        return self

    def add_dynamic_element(self, segment: PlaceholderSegment) -> Namespace:
        self.elements.append(
            NamespaceElement(
                PLACEHOLDER,
                segment.name,
                segment.description,
                segment=segment,
                index=len(self.elements),
            )
        )
        return self

    def dynamic_elements(self) -> Iterator[NamespaceElement]:
        return (elem for elem in self.elements if elem.is_dynamic)

    def copy(self) -> Namespace:
        return Namespace(elem.copy() for elem in self.elements)

    def strings(self) -> Tuple[str, ...]:
        return tuple(elem.value for elem in self.elements)

    def __iter__(self):
        return iter(self.elements)

    def __len__(self):
        return len(self.elements)

    def __getitem__(self, index):
        return self.elements[index]

    def __eq__(self, other):
        return isinstance(other, Namespace) and self.elements == other.elements

    def __str__(self):
        return "/" + "/".join(self.strings())

    def __repr__(self):
        return "Namespace(%r)" % str(self)


def compile_result(
    result: config.Result, prefix: Sequence[str] = config.DEFAULT_PREFIX
) -> Namespace:
    """Build the template for ``result`` and store it on the result.

    Recompiling replaces the template with an equivalent one.

    """
    namespace = Namespace.from_prefix(prefix)
    for segment in result.segments:
        if isinstance(segment, config.StaticSegment):
            namespace.add_static_element(segment.string)
        else:
            namespace.add_dynamic_element(segment)

    result.template = namespace
    return namespace


def compile_settings(settings: config.Settings) -> None:
    for query in settings.queries.values():
        for result in query.results.values():
            compile_result(result, settings.prefix)
