"""Kubernetes resource quantities and their conversion into per-resource attributes."""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Any

_NUMBER_RE = re.compile(r"([+-]?(?:\d+\.?\d*|\.\d+))(.*)", re.ASCII | re.DOTALL)
_EXPONENT_RE = re.compile(r"[eE]([+-]?\d+)", re.ASCII)

_BINARY_SUFFIXES = {
    "Ki": 2**10,
    "Mi": 2**20,
    "Gi": 2**30,
    "Ti": 2**40,
    "Pi": 2**50,
    "Ei": 2**60,
}

_DECIMAL_SUFFIXES = {
    "n": -9,
    "u": -6,
    "m": -3,
    "": 0,
    "k": 3,
    "M": 6,
    "G": 9,
    "T": 12,
    "P": 15,
    "E": 18,
}

_CAMEL_TOKEN_RE = re.compile(r"[0-9]+|[A-Z]+[a-z]*|[a-z]+", re.ASCII)

CPU = "cpu"
MEMORY = "memory"
STORAGE = "storage"
EPHEMERAL_STORAGE = "ephemeral-storage"


def _round_away_from_zero(value: Fraction) -> int:
    return math.ceil(value) if value >= 0 else math.floor(value)


@dataclass(frozen=True)
class Quantity:
    """An exact resource amount, such as ``2`` cores or ``1985m``."""

    amount: Fraction

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", Fraction(self.amount))

    def value(self) -> int:
        """The amount rounded to an integer away from zero."""
        return _round_away_from_zero(self.amount)

    def milli_value(self) -> int:
        """The amount in thousandths, rounded to an integer away from zero."""
        return _round_away_from_zero(self.amount * 1000)

    def as_approximate_float(self) -> float:
        """The amount as the nearest float."""
        return float(self.amount)


def parse_quantity(text: str) -> Quantity:
    """Parse a quantity string such as ``110``, ``1985m``, ``2Gi`` or ``1e3``."""
    match = _NUMBER_RE.fullmatch(text.strip()) if isinstance(text, str) else None
    if match is None:
        raise ValueError(f"quantities must match the regular expression: {text!r}")
    number, suffix = match.groups()
    amount = Fraction(number)

    if suffix in _BINARY_SUFFIXES:
        return Quantity(amount * _BINARY_SUFFIXES[suffix])
    if suffix in _DECIMAL_SUFFIXES:
        return Quantity(amount * Fraction(10) ** _DECIMAL_SUFFIXES[suffix])
    exponent = _EXPONENT_RE.fullmatch(suffix)
    if exponent is not None:
        return Quantity(amount * Fraction(10) ** int(exponent.group(1)))
    raise ValueError(f"unable to parse quantity's suffix: {text!r}")


def _is_title_separator(ch: str) -> bool:
    return not (ch.isalnum() or ch == "_")


def _title(text: str) -> str:
    """Upper-case the first letter of every word."""
    out = []
    previous = " "
    for ch in text:
        out.append(ch.upper() if _is_title_separator(previous) else ch)
        previous = ch
    return "".join(out)


def camelcase(text: str) -> str:
    """Join the words of ``text`` in lower camel case, dropping punctuation."""
    words = []
    for token in _CAMEL_TOKEN_RE.findall(text):
        if token[0].isdigit():
            words.append(token)
        elif token[0].isupper():
            upper_run = len(token) - len(token.lstrip("ABCDEFGHIJKLMNOPQRSTUVWXYZ"))
            words.append(token[0] + token[1:upper_run].lower() + token[upper_run:])
        else:
            words.append(token[0].upper() + token[1:])
    joined = "".join(words)
    return joined[:1].lower() + joined[1:]


class _ResourceType(str, Enum):
    ALLOCATABLE = "allocatable"
    CAPACITY = "capacity"


_UNIT_SUFFIXES = {
    EPHEMERAL_STORAGE: "Bytes",
    MEMORY: "Bytes",
    CPU: "Cores",
    STORAGE: "Bytes",
}


def add_resource_unit(resource: str) -> str:
    """Append the unit of a known resource to its name."""
    return resource + _UNIT_SUFFIXES.get(resource, "")


def _is_resource_list(value: Any) -> bool:
    return isinstance(value, Mapping) and all(
        isinstance(name, str) and isinstance(quantity, Quantity)
        for name, quantity in value.items()
    )


def _one_attribute_per_resource(raw_resources: Any, resource_type: _ResourceType) -> dict[str, Any]:
    if not _is_resource_list(raw_resources):
        raise TypeError(f"creating resource {resource_type.value} attributes")

    modified: dict[str, Any] = {}
    for name, quantity in raw_resources.items():
        attribute = camelcase(resource_type.value + _title(add_resource_unit(name)))
        if name == CPU:
            # Cores are reported fractionally, so avoid rounding them up.
            modified[attribute] = quantity.as_approximate_float()
        else:
            modified[attribute] = quantity.value()
    return modified


def one_attribute_per_allocatable(raw_resources: Any) -> dict[str, Any]:
    """One attribute per allocatable resource, prefixed with ``allocatable``."""
    return _one_attribute_per_resource(raw_resources, _ResourceType.ALLOCATABLE)


def one_attribute_per_capacity(raw_resources: Any) -> dict[str, Any]:
    """One attribute per capacity resource, prefixed with ``capacity``."""
    return _one_attribute_per_resource(raw_resources, _ResourceType.CAPACITY)