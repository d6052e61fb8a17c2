"""Loader/validator for the versioned keyword rule table."""

from __future__ import annotations

import argparse
import hashlib
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from app.config import settings
from app.models.signals import KeywordRule
from app.services.scoring.errors import ConfigurationError

logger = logging.getLogger("app.services.scoring.keyword_rules")


@dataclass(frozen=True)
class KeywordRuleTable:
    """Immutable rule set loaded once per scoring run."""

    version: str
    rules: tuple[KeywordRule, ...]
    base_score: int
    multiplier: int
    ruleset_sha256: str

    def __len__(self) -> int:
        return len(self.rules)


def load_rules(path: Path | None = None) -> KeywordRuleTable:
    target = (path or Path(settings.keyword_rules_path)).expanduser()
    if not target.exists():
        raise ConfigurationError(f"Keyword rules not found at {target}", code="RULES_LOAD_ERROR")
    try:
        parsed = yaml.safe_load(target.read_bytes().decode("utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Unable to parse YAML: {exc}", code="RULES_SCHEMA_INVALID") from exc
    if not isinstance(parsed, Mapping):
        raise ConfigurationError("Keyword rules must be a mapping.", code="RULES_SCHEMA_INVALID")
    return build_rule_table(parsed)


def build_rule_table(document: Mapping[str, object]) -> KeywordRuleTable:
    """Validate a parsed rule document and compute its canonical sha256."""
    version = str(document.get("version") or "").strip()
    if not version:
        raise ConfigurationError("version is required.", code="RULES_SCHEMA_INVALID")

    raw_rules = document.get("rules")
    if not isinstance(raw_rules, Sequence) or isinstance(raw_rules, str) or not raw_rules:
        raise ConfigurationError("rules must be a non-empty list.", code="RULES_SCHEMA_INVALID")

    rules: list[KeywordRule] = []
    seen: set[str] = set()
    for index, entry in enumerate(raw_rules):
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"rules[{index}] must be a mapping.", code="RULES_SCHEMA_INVALID")
        try:
            rule = KeywordRule.model_validate(
                {**entry, "tags": frozenset(entry.get("tags") or ())}
            )
        except ValidationError as exc:
            raise ConfigurationError(
                f"rules[{index}] is invalid: {exc.errors()[0]['msg']}", code="RULES_SCHEMA_INVALID"
            ) from exc
        if rule.phrase in seen:
            raise ConfigurationError(f"Duplicate phrase: {rule.phrase}", code="RULES_SCHEMA_INVALID")
        seen.add(rule.phrase)
        rules.append(rule)

    scoring = document.get("scoring") or {}
    if not isinstance(scoring, Mapping):
        raise ConfigurationError("scoring must be a mapping when provided.", code="RULES_SCHEMA_INVALID")
    base_score = scoring.get("base_score", settings.signal_base_score)
    multiplier = scoring.get("multiplier", settings.signal_keyword_multiplier)
    if not isinstance(base_score, int) or not 0 <= base_score <= 100:
        raise ConfigurationError("scoring.base_score must be an integer in [0, 100].", code="RULES_SCHEMA_INVALID")
    if not isinstance(multiplier, int) or multiplier < 1:
        raise ConfigurationError("scoring.multiplier must be a positive integer.", code="RULES_SCHEMA_INVALID")

    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    ruleset_sha256 = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    logger.info(
        "keyword_rules.loaded",
        extra={"version": version, "rules": len(rules), "sha256": ruleset_sha256},
    )
    return KeywordRuleTable(
        version=version,
        rules=tuple(rules),
        base_score=base_score,
        multiplier=multiplier,
        ruleset_sha256=ruleset_sha256,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Keyword rule table loader/validator.")
    parser.add_argument("--rules", type=Path, default=Path(settings.keyword_rules_path), help="Path to keyword rules YAML.")
    parser.add_argument("--print-sha", action="store_true", help="Print the ruleset sha256 and exit.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    args = parse_args(argv or [])
    try:
        table = load_rules(args.rules)
    except ConfigurationError as exc:
        logger.error("%s (code=%s)", exc, exc.code)
        return 1
    if args.print_sha:
        print(table.ruleset_sha256)
    else:
        print(f"{table.version}: {len(table)} rules")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
