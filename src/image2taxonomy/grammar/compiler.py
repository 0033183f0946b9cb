"""
compiler.py

Compiles a taxonomy tree into a GBNF grammar for llama-server.

The grammar forces the model to answer with
    {"title": "...", "description": "...", "taxonomy": "<path>"}
where <path> is a " > " separated path that starts at the vertical root and
follows real parent/child edges of the taxonomy. Any prefix of a path is
accepted, so the model may stop at an internal category.

Rule layout (one rule per node, pre-order):
    taxonomy-inner ::= "Apparel & Accessories" (seperator taxonomy-apparel-accessories-children)
    taxonomy-apparel-accessories-children ::= ( taxonomy-clothing | taxonomy-jewelry | ... )
    taxonomy-clothing ::= "Clothing" (seperator taxonomy-clothing-children)?
    taxonomy-anklets ::= "Anklets"
"""

import json
import re
from typing import Dict, List, Optional

from image2taxonomy.exception import GrammarCompileError
from image2taxonomy.logger import get_logger
from image2taxonomy.models import Grammar, GrammarRule, TaxonomyNode

logger = get_logger(__name__)

RULE_PREFIX = "taxonomy"
ROOT_NODE_RULE = "taxonomy-inner"
SEPARATOR_RULE = "seperator"
PATH_SEPARATOR = " > "

# Envelope rules shared by every compiled grammar.
HEADER_RULES = [
    GrammarRule(
        name="root",
        expression=(
            r'"{" ws "\"title\":" ws string ws "," ws "\"description\":" ws string ws "," '
            r'ws "\"taxonomy\":" ws taxonomy ws "}"'
        ),
    ),
    GrammarRule(name="ws", expression=r"[ \t\n\r]*"),
    GrammarRule(name="string", expression=r'"\"" char* "\""'),
    GrammarRule(name="char", expression=r'[^"\\] | "\\" ["\\/bfnrt]'),
    GrammarRule(name=SEPARATOR_RULE, expression=f'"{PATH_SEPARATOR}"'),
    GrammarRule(name=RULE_PREFIX, expression=rf'"\"" {ROOT_NODE_RULE} "\""'),
]

_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")


def clean(name: str) -> str:
    """
    Transliterate a category name into a rule-name fragment.

    ASCII letters are lower-cased, digits kept, every other run of
    characters becomes a single "-", and edge dashes are dropped.
        "Men's Shoes" -> "men-s-shoes"
    """
    lowered = "".join(ch.lower() if "A" <= ch <= "Z" else ch for ch in name)
    return _NON_ALNUM_RUN.sub("-", lowered).strip("-")


def _quote(literal: str) -> str:
    """
    GBNF literal for a category name. Names land inside the JSON taxonomy
    string, so they are JSON-escaped first and GBNF-escaped second.
    """
    json_text = json.dumps(literal, ensure_ascii=False)[1:-1]
    escaped = json_text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _node_rule_name(node: TaxonomyNode, is_root: bool) -> str:
    if is_root:
        return ROOT_NODE_RULE
    return f"{RULE_PREFIX}-{_fragment(node)}"


def _children_rule_name(node: TaxonomyNode) -> str:
    return f"{RULE_PREFIX}-{_fragment(node)}-children"


def _fragment(node: TaxonomyNode) -> str:
    fragment = clean(node.name)
    if not fragment:
        raise GrammarCompileError(
            f"Category '{node.name}' (id={node.id}) has no letters or digits to build a rule name from"
        )
    return fragment


def _node_rules(node: TaxonomyNode, is_root: bool) -> List[GrammarRule]:
    name = _node_rule_name(node, is_root)

    if node.is_leaf:
        return [GrammarRule(name=name, expression=_quote(node.name))]

    children_rule = _children_rule_name(node)
    continuation = f"({SEPARATOR_RULE} {children_rule})"
    if not is_root:
        continuation += "?"

    alternatives = " |\n\t".join(_node_rule_name(child, False) for child in node.children)
    return [
        GrammarRule(name=name, expression=f"{_quote(node.name)} {continuation}"),
        GrammarRule(name=children_rule, expression=f"(\n\t{alternatives}\n)"),
    ]


def compile_grammar(root: TaxonomyNode) -> Grammar:
    """
    Build the grammar for a taxonomy tree. Deterministic: the same tree
    always yields the same rules in the same order.

    Raises GrammarCompileError when a name transliterates to nothing or two
    different categories would share a rule name.
    """
    rules = list(HEADER_RULES)
    owners: Dict[str, Optional[TaxonomyNode]] = {rule.name: None for rule in HEADER_RULES}

    for node in root.walk():
        for rule in _node_rules(node, is_root=node is root):
            if rule.name in owners:
                other = owners[rule.name]
                other_desc = f"'{other.name}' (id={other.id})" if other is not None else "a fixed envelope rule"
                raise GrammarCompileError(
                    f"Rule name '{rule.name}' for '{node.name}' (id={node.id}) collides with {other_desc}"
                )
            owners[rule.name] = node
            rules.append(rule)

    grammar = Grammar(root="root", rules=rules)
    grammar.validate_references()

    logger.info(f"Compiled grammar with {len(rules)} rules for vertical '{root.name}'")
    return grammar
