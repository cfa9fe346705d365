"""Table naming conventions shared by discovery, sync and integrity checks."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from sla_sync.errors import InvalidIdentifierError

SOURCE_TABLE_RE = re.compile(r"^(?P<prefix>[a-z][a-z0-9_]*?)_(?P<country>[a-z]{2})_orders$")
AUXILIARY_TABLE_RE = re.compile(
    r"^(?P<prefix>[a-z][a-z0-9_]*?)_(?P<country>[a-z]{2})_(?P<kind>payments|shipments)$"
)
TARGET_TABLE_RE = re.compile(r"^orders_(?P<brand_code>[a-z0-9]+)_(?P<country>[a-z]{2})$")
BRAND_CODE_RE = re.compile(r"^[a-z0-9]+$")

FALLBACK_CODE_LENGTH = 3


@dataclass(frozen=True)
class BrandAlias:
    code: str
    name: str


DEFAULT_BRAND_ALIASES: Mapping[str, BrandAlias] = MappingProxyType(
    {
        "victoriasecret": BrandAlias("vs", "Victoria's Secret"),
        "bbw": BrandAlias("bbw", "Bath & Body Works"),
        "rituals": BrandAlias("rituals", "Rituals"),
    }
)


@dataclass(frozen=True)
class CatalogSettings:
    brand_aliases: Mapping[str, BrandAlias] = field(default_factory=lambda: DEFAULT_BRAND_ALIASES)
    confirmed_only_counts: bool = True


DEFAULT_CATALOG_SETTINGS = CatalogSettings()


def resolve_brand(prefix: str, aliases: Mapping[str, BrandAlias] = DEFAULT_BRAND_ALIASES) -> BrandAlias:
    """Map a source table prefix to its brand code and display name.

    Unknown prefixes use their first three alphanumeric characters as the code
    and the capitalised prefix as the name.
    """

    alias = aliases.get(prefix)
    if alias is not None:
        return alias
    compact = re.sub(r"[^a-z0-9]", "", prefix.lower())
    return BrandAlias(code=compact[:FALLBACK_CODE_LENGTH], name=prefix.capitalize())


def ensure_identifier(name: str, pattern: re.Pattern[str]) -> str:
    if not pattern.match(name):
        raise InvalidIdentifierError(f"Table name {name!r} does not match {pattern.pattern}")
    return name


def target_table_name(brand_code: str, country_code: str) -> str:
    return ensure_identifier(f"orders_{brand_code.lower()}_{country_code.lower()}", TARGET_TABLE_RE)


@dataclass(frozen=True)
class SourceTable:
    name: str
    brand_prefix: str
    brand_code: str
    brand_name: str
    country_code: str

    @property
    def target_table(self) -> str:
        return target_table_name(self.brand_code, self.country_code)

    @property
    def payments_table(self) -> str:
        return ensure_identifier(f"{self.brand_prefix}_{self.country_code}_payments", AUXILIARY_TABLE_RE)

    @property
    def shipments_table(self) -> str:
        return ensure_identifier(f"{self.brand_prefix}_{self.country_code}_shipments", AUXILIARY_TABLE_RE)

    @property
    def partition(self) -> tuple[str, str]:
        return self.brand_name, self.country_code.upper()


def parse_source_table(
    name: str, aliases: Mapping[str, BrandAlias] = DEFAULT_BRAND_ALIASES
) -> SourceTable | None:
    match = SOURCE_TABLE_RE.match(name)
    if not match:
        return None
    prefix = match.group("prefix")
    brand = resolve_brand(prefix, aliases)
    return SourceTable(
        name=name,
        brand_prefix=prefix,
        brand_code=brand.code,
        brand_name=brand.name,
        country_code=match.group("country"),
    )


def parse_target_table(name: str) -> tuple[str, str] | None:
    """Return ``(brand_code, country_code)`` for a target table name."""

    match = TARGET_TABLE_RE.match(name)
    if not match:
        return None
    return match.group("brand_code"), match.group("country")


def brand_name_for_code(brand_code: str, aliases: Mapping[str, BrandAlias] = DEFAULT_BRAND_ALIASES) -> str:
    for alias in aliases.values():
        if alias.code == brand_code:
            return alias.name
    return brand_code.upper()
