"""
Trigger resolution for LinkStore.

A trigger turns an incoming request into bounds on a trigger index:
- UUID rules read the n-th UUID from the request URL
- Parameter rules read query parameter values
- Search rules widen their value into an upper/lower-case range

Parameters declared through `params` may carry several values; every
combination of values is resolved into its own pair of bounds.

Invariants:
    - Bounds always have one member per trigger rule, in rule order
    - Combinations are unique and keep first-seen order
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlsplit

from .schema.types import OptionsTrigger, ParamRule, TriggerRule, UuidRule
from .storage.keys import extract_primary_key

logger = logging.getLogger(__name__)

Bounds = tuple[list[Any], list[Any]]


@dataclass
class RequestContext:
    """The parts of a request that triggers read.

    Attributes:
        url: Request URL; UUID rules search it for UUIDs
        params: Query parameter name -> all of its values
    """

    url: str = ""
    params: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_url(cls, url: str, params: dict[str, Any] | None = None) -> RequestContext:
        """Build a context from a URL, merging its query string with `params`.

        Example:
            >>> RequestContext.from_url("/api/people?tag=a&tag=b").get_all("tag")
            ['a', 'b']
        """
        merged: dict[str, list[str]] = {
            name: list(values)
            for name, values in parse_qs(urlsplit(url).query, keep_blank_values=True).items()
        }
        for name, value in (params or {}).items():
            values = value if isinstance(value, (list, tuple)) else [value]
            merged.setdefault(name, []).extend(str(item) for item in values)
        return cls(url=url, params=merged)

    def get(self, name: str | None) -> str | None:
        values = self.get_all(name)
        return values[0] if values else None

    def get_all(self, name: str | None) -> list[str]:
        if not name:
            return []
        return list(self.params.get(name, []))


def is_search_trigger(trigger: OptionsTrigger) -> bool:
    return any(isinstance(rule, ParamRule) and rule.search for rule in trigger.rules)


def is_multi_valued(trigger: OptionsTrigger) -> bool:
    return any(isinstance(rule, ParamRule) and rule.params for rule in trigger.rules)


class TriggerResolver:
    """Resolves trigger rules against a request.

    Example:
        >>> resolver = TriggerResolver()
        >>> request = RequestContext.from_url("/api/locations/0b7c5e4e-6a4f-4a39-9c57-3f1f0e1b2a11/people")
        >>> resolver.combinations(trigger, request)
        [(['0b7c5e4e-6a4f-4a39-9c57-3f1f0e1b2a11'], ['0b7c5e4e-6a4f-4a39-9c57-3f1f0e1b2a11'])]
    """

    def value_for_rule(self, request: RequestContext, rule: TriggerRule) -> tuple[Any, Any]:
        """Lower and upper bound contributed by one rule.

        UUID rules yield "" when the URL has no UUID at that position.
        Parameter rules pick `index` (default first) of the `params` values,
        falling back to `param`, and yield "" when nothing is there.
        """
        if isinstance(rule, UuidRule):
            value = extract_primary_key(request.url, rule.index, exact=True)
            return value, value

        values = request.get_all(rule.params) or request.get_all(rule.param)
        position = rule.index or 0
        value = values[position] if position < len(values) else ""
        return self._bounds_for_value(rule, value)

    @staticmethod
    def _bounds_for_value(rule: ParamRule, value: str) -> tuple[Any, Any]:
        parsed = extract_primary_key(value) if rule.primary_key and value else value
        if not rule.search or not rule.search_in:
            return parsed, parsed
        text = str(parsed)
        return text.upper(), text.lower() + "z"

    def bounds(self, trigger: OptionsTrigger, request: RequestContext) -> Bounds:
        """Bounds taking a single value for every rule."""
        start: list[Any] = []
        end: list[Any] = []
        for rule in trigger.rules:
            lower, upper = self.value_for_rule(request, rule)
            start.append(lower)
            end.append(upper)
        return start, end

    def combinations(self, trigger: OptionsTrigger, request: RequestContext) -> list[Bounds]:
        """Bounds for every combination of multi-valued parameter values.

        Rules declared with `params` and an explicit `index` still take one
        value. Without any multi-valued rule this is just `[bounds(...)]`.
        """
        choices: list[list[tuple[Any, Any]]] = []
        for rule in trigger.rules:
            if isinstance(rule, ParamRule) and rule.params and rule.index is None:
                values = request.get_all(rule.params)
                if values:
                    choices.append([self._bounds_for_value(rule, value) for value in values])
                    continue
            choices.append([self.value_for_rule(request, rule)])

        unique: list[Bounds] = []
        for combination in itertools.product(*choices):
            start = [lower for lower, _ in combination]
            end = [upper for _, upper in combination]
            if (start, end) not in unique:
                unique.append((start, end))

        if len(unique) > 1:
            logger.debug(
                f"Trigger {trigger.name} expands to {len(unique)} combinations",
                extra={"collection": trigger.collection, "trigger": trigger.name},
            )
        return unique
