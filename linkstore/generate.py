"""
Default-value generation for LinkStore.

`add()` can fill fields the caller left out from a template. A template is
one of the variants below, or a plain dictionary tagged with a `type` that
parse_template() turns into one:

    {"type": "uuid", "prefix": "/api/people/"}
    {"type": "number", "min": 1, "max": 100, "precision": 1}
    {"type": "word", "words": ["red", "green"]}
    {"type": "text", "min_words": 3, "max_words": 8}
    {"type": "boolean"}
    {"type": "email"}
    {"type": "date", "start": "2020-01-01", "end": "2025-01-01"}
    {"type": "constant", "value": ...}
    {"type": "object", "properties": {"name": <template>, ...}}
    {"type": "array", "content": <template>, "min_items": 1, "max_items": 5}

A dictionary without a `type` is treated as an object template whose
values are templates; anything that is not a dictionary or a variant is a
constant.

Random data generation is a collaborator of the engine, not part of it;
any object with a `generate(template)` method can stand in.
"""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Protocol, runtime_checkable

from .errors import InvalidTemplateError

WORDS = (
    "alpha", "amber", "birch", "cedar", "cobalt", "delta", "ember", "fjord",
    "garnet", "harbor", "indigo", "juniper", "kestrel", "lagoon", "maple",
    "nectar", "onyx", "pebble", "quartz", "raven", "saffron", "timber",
    "umber", "violet", "willow", "zephyr",
)


# =============================================================================
# Template variants
# =============================================================================


@dataclass(frozen=True)
class Template:
    """Base of every template variant."""


@dataclass(frozen=True)
class UuidTemplate(Template):
    prefix: str = ""


@dataclass(frozen=True)
class NumberTemplate(Template):
    min: int | float = 0
    max: int | float = 1000
    precision: int | float = 1


@dataclass(frozen=True)
class WordTemplate(Template):
    words: tuple[str, ...] | list[str] = ()


@dataclass(frozen=True)
class TextTemplate(Template):
    min_words: int = 3
    max_words: int = 8


@dataclass(frozen=True)
class BooleanTemplate(Template):
    chance: float = 0.5


@dataclass(frozen=True)
class EmailTemplate(Template):
    domain: str = "example.com"


@dataclass(frozen=True)
class DateTemplate(Template):
    start: str = "2000-01-01"
    end: str = "2030-12-31"


@dataclass(frozen=True)
class ConstantTemplate(Template):
    value: Any = None


@dataclass(frozen=True)
class ObjectTemplate(Template):
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ArrayTemplate(Template):
    content: Any = None
    min_items: int = 1
    max_items: int = 5


# Tag in serialized templates -> variant
TEMPLATE_TYPES: dict[str, type[Template]] = {
    "uuid": UuidTemplate,
    "number": NumberTemplate,
    "word": WordTemplate,
    "text": TextTemplate,
    "boolean": BooleanTemplate,
    "email": EmailTemplate,
    "date": DateTemplate,
    "constant": ConstantTemplate,
    "object": ObjectTemplate,
    "array": ArrayTemplate,
}


def parse_template(raw: dict[str, Any]) -> Template:
    """Build the variant a tagged dictionary describes.

    Raises:
        InvalidTemplateError: If the tag is unknown or a field does not belong
    """
    fields = dict(raw)
    kind = fields.pop("type", None)
    if kind is None:
        return ObjectTemplate(properties=fields)
    variant = TEMPLATE_TYPES.get(kind)
    if variant is None:
        raise InvalidTemplateError(f"Unknown template type: {kind}", raw)
    try:
        return variant(**fields)
    except TypeError as e:
        raise InvalidTemplateError(f"Invalid {kind} template: {e}", raw) from e


# =============================================================================
# Generators
# =============================================================================


@runtime_checkable
class ValueGenerator(Protocol):
    """Produces a value from a template."""

    def generate(self, template: Any) -> Any:
        ...


class TemplateGenerator:
    """Generates values from template variants.

    Example:
        >>> generator = TemplateGenerator(seed=1)
        >>> generator.generate(NumberTemplate(min=1, max=3))
        1
    """

    def __init__(self, seed: int | None = None) -> None:
        self._random = random.Random(seed)

    def generate(self, template: Any) -> Any:
        """Generate a value.

        Raises:
            InvalidTemplateError: If a template is not a known variant
        """
        match template:
            case UuidTemplate(prefix=prefix):
                value = uuid.UUID(int=self._random.getrandbits(128), version=4)
                return f"{prefix}{value}"
            case NumberTemplate():
                return self._number(template)
            case WordTemplate(words=words):
                return self._random.choice(words or WORDS)
            case TextTemplate(min_words=low, max_words=high):
                words = [self._random.choice(WORDS) for _ in range(self._random.randint(low, high))]
                return " ".join(words).capitalize() + "."
            case BooleanTemplate(chance=chance):
                return self._random.random() < chance
            case EmailTemplate(domain=domain):
                return f"{self._random.choice(WORDS)}.{self._random.choice(WORDS)}@{domain}"
            case DateTemplate(start=start, end=end):
                first, last = date.fromisoformat(start), date.fromisoformat(end)
                offset = self._random.randint(0, max((last - first).days, 0))
                return (first + timedelta(days=offset)).isoformat()
            case ConstantTemplate(value=value):
                return value
            case ObjectTemplate(properties=properties):
                return {key: self.generate(value) for key, value in properties.items()}
            case ArrayTemplate(content=content, min_items=low, max_items=high):
                return [self.generate(content) for _ in range(self._random.randint(low, high))]
            case Template():
                raise InvalidTemplateError(f"Unknown template variant: {type(template).__name__}", template)
            case dict():
                return self.generate(parse_template(template))
            case _:
                return template

    def _number(self, template: NumberTemplate) -> int | float:
        low, high, precision = template.min, template.max, template.precision
        if isinstance(precision, int) and isinstance(low, int) and isinstance(high, int):
            return self._random.randrange(low, high + 1, max(precision, 1))
        steps = int((high - low) / precision)
        decimals = max(0, len(str(precision).partition(".")[2]))
        return round(low + self._random.randint(0, steps) * precision, decimals)
