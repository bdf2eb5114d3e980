"""Keyword categorizer for chunks and questions.

Every text maps to exactly one category from a closed set. Rules are tried
in priority order and the first rule with a whole-word match wins; text that
matches nothing falls into ``general``.
"""
import re
from dataclasses import dataclass, field
from typing import List, Pattern, Tuple

CORE = "core"
INTEGRATION = "integration"
SECURITY = "security"
DEPLOYMENT = "deployment"
GENERAL = "general"

CATEGORIES: Tuple[str, ...] = (CORE, INTEGRATION, SECURITY, DEPLOYMENT, GENERAL)
DEFAULT_CATEGORY = GENERAL


def _keyword_pattern(keywords: Tuple[str, ...]) -> Pattern:
    # Longest first so "smart contracts" wins over "smart contract"
    ordered = sorted(keywords, key=len, reverse=True)
    alternation = "|".join(re.escape(k) for k in ordered)
    return re.compile(rf"(?<![\w-])({alternation})(?![\w-])", re.IGNORECASE)


@dataclass(frozen=True)
class CategoryRule:
    category: str
    keywords: Tuple[str, ...]
    pattern: Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "pattern", _keyword_pattern(self.keywords))

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


RULES: Tuple[CategoryRule, ...] = (
    CategoryRule(SECURITY, (
        "security", "secure", "vulnerability", "vulnerabilities", "vulnerable",
        "exploit", "exploits", "attack", "attacks", "attacker", "audit", "audits",
        "auditing", "threat", "malicious", "double satisfaction", "front-running",
        "frontrunning", "unauthorized", "cve", "hardening", "privacy leak",
    )),
    CategoryRule(DEPLOYMENT, (
        "deploy", "deploys", "deployed", "deploying", "deployment", "deployments",
        "mainnet", "testnet", "preprod", "preview network", "docker", "dockerfile",
        "kubernetes", "helm", "ci/cd", "github actions", "node operator",
        "cardano-node", "stake pool", "infrastructure", "hosting", "release",
    )),
    CategoryRule(INTEGRATION, (
        "api", "apis", "sdk", "sdks", "integration", "integrate", "integrating",
        "lucid", "mesh", "blockfrost", "ogmios", "kupo", "wallet", "wallets",
        "cip-30", "frontend", "off-chain", "offchain", "typescript", "graphql",
        "rest", "endpoint", "endpoints", "client library", "dapp connector",
    )),
    CategoryRule(CORE, (
        "validator", "validators", "datum", "datums", "redeemer", "redeemers",
        "eutxo", "utxo", "utxos", "plutus", "aiken", "compact", "smart contract",
        "smart contracts", "minting policy", "script context", "on-chain",
        "onchain", "zero-knowledge", "zk", "circuit", "circuits", "ledger",
        "transaction", "transactions",
    )),
)

TECHNOLOGY_TERMS: Tuple[str, ...] = (
    "cardano", "aiken", "plutus", "plutustx", "midnight", "compact", "lucid",
    "mesh", "blockfrost", "ogmios", "kupo", "hydra", "marlowe", "cardano-cli",
    "cardano-node", "qdrant", "ollama", "langchain",
)
_TECHNOLOGY_PATTERN = _keyword_pattern(TECHNOLOGY_TERMS)


def categorize(text: str) -> str:
    """Return the category of the first matching rule, or ``general``."""
    if not text:
        return DEFAULT_CATEGORY
    for rule in RULES:
        if rule.matches(text):
            return rule.category
    return DEFAULT_CATEGORY


def match_categories(text: str) -> List[str]:
    """Every category whose rule matches, in priority order (may be empty)."""
    if not text:
        return []
    return [rule.category for rule in RULES if rule.matches(text)]


def mentions_technology(text: str) -> bool:
    return bool(text) and _TECHNOLOGY_PATTERN.search(text) is not None
