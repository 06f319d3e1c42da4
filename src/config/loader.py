"""YAML routing-table loader.

# ─── ROUTING CONFIGURATION ─────────────────────────────────────────────
#
# The routing table maps each intent category to an LLM provider, model
# and generation limits.  It is read ONCE at startup from
# config/routing.yaml (path configurable via ROUTING_CONFIG_PATH):
#
#   default:
#     provider: openai
#     model: gpt-4o-mini
#     max_context_tokens: 4000
#   fallback_category: EXPLAIN
#   routes:
#     EXPLAIN:  {provider: anthropic, model: claude-sonnet-4-20250514}
#     ANALYZE:  {provider: openai,    model: gpt-4o}
#     RESEARCH: {provider: openai,    model: gpt-4o}
#
# The returned RoutingTable is frozen.  Every problem (missing file,
# unknown category, unknown provider, bad numbers) raises
# InvalidConfigurationError so the process refuses to start.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from src.models.routing import IntentCategory, RoutingRule, RoutingTable
from src.utils.errors import InvalidConfigurationError
from src.utils.logging import get_logger

KNOWN_PROVIDERS = frozenset({"openai", "anthropic", "ollama"})

_logger = get_logger(__name__)


def load_routing_table(
    path: str = "config/routing.yaml",
    known_providers: Iterable[str] = KNOWN_PROVIDERS,
) -> RoutingTable:
    """Read and validate the routing table at *path*.

    Parameters
    ----------
    path:
        YAML file location.
    known_providers:
        Provider ids the table may reference.

    Raises
    ------
    InvalidConfigurationError
        If the file is missing, unparseable, or references an unknown
        category or provider.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise InvalidConfigurationError(message=f"Routing config not found: {path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            # yaml.safe_load prevents arbitrary code execution from YAML.
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise InvalidConfigurationError(message=f"Routing config is not valid YAML: {exc}") from exc

    table = parse_routing_table(raw, known_providers)
    _logger.info(
        "routing_table_loaded",
        path=str(config_path),
        routes={c.value: r.provider for c, r in table.rules.items()},
        default_provider=table.default.provider,
        fallback_category=table.fallback_category.value,
    )
    return table


def parse_routing_table(
    raw: dict[str, Any],
    known_providers: Iterable[str] = KNOWN_PROVIDERS,
) -> RoutingTable:
    """Validate an already-parsed mapping and build a :class:`RoutingTable`."""
    if not isinstance(raw, dict):
        raise InvalidConfigurationError(message="Routing config must be a mapping")

    known = set(known_providers)

    if "default" not in raw:
        raise InvalidConfigurationError(message="Routing config needs a 'default' rule")
    default = _parse_rule("default", raw["default"], known)

    rules: dict[IntentCategory, RoutingRule] = {}
    routes = raw.get("routes") or {}
    if not isinstance(routes, dict):
        raise InvalidConfigurationError(message="'routes' must be a mapping of category to rule")
    for name, body in routes.items():
        category = _parse_category(name)
        rules[category] = _parse_rule(category.value, body, known)

    fallback = _parse_category(raw.get("fallback_category", IntentCategory.EXPLAIN.value))

    return RoutingTable(rules=rules, default=default, fallback_category=fallback)


def _parse_category(name: Any) -> IntentCategory:
    try:
        return IntentCategory(str(name).upper())
    except ValueError as exc:
        raise InvalidConfigurationError(
            message=f"Unknown intent category in routing config: {name!r}"
        ) from exc


def _parse_rule(label: str, body: Any, known: set[str]) -> RoutingRule:
    if not isinstance(body, dict):
        raise InvalidConfigurationError(message=f"Routing rule {label!r} must be a mapping")
    try:
        rule = RoutingRule(**body)
    except ValidationError as exc:
        raise InvalidConfigurationError(message=f"Invalid routing rule {label!r}: {exc}") from exc
    if rule.provider not in known:
        raise InvalidConfigurationError(
            message=f"Routing rule {label!r} names unknown provider {rule.provider!r}"
        )
    return rule
