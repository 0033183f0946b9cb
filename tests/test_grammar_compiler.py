import json
import re

import pytest

from image2taxonomy.exception import GrammarCompileError
from image2taxonomy.grammar.compiler import (
    HEADER_RULES,
    ROOT_NODE_RULE,
    clean,
    compile_grammar,
)
from image2taxonomy.models import Grammar, GrammarRule, TaxonomyNode


def make_node(node_id, name, depth, *children):
    return TaxonomyNode(id=node_id, name=name, depth=depth, children=list(children))


# --- clean() ---

@pytest.mark.parametrize(
    "name, expected",
    [
        ("Clothing", "clothing"),
        ("Apparel & Accessories", "apparel-accessories"),
        ("Men's Shoes", "men-s-shoes"),
        ("T-Shirts", "t-shirts"),
        ("  Handbags, Wallets & Cases  ", "handbags-wallets-cases"),
        ("3D Glasses", "3d-glasses"),
        ("Café Au Lait", "caf-au-lait"),
    ],
)
def test_clean(name, expected):
    assert clean(name) == expected


@pytest.mark.parametrize("name", ["Men's Shoes", "A -- B", "x&&y", "Shoe Accessories"])
def test_clean_is_idempotent_and_case_insensitive(name):
    cleaned = clean(name)
    assert clean(cleaned) == cleaned
    assert clean(name.upper()) == cleaned
    assert "--" not in cleaned
    assert not cleaned.startswith("-") and not cleaned.endswith("-")


def test_clean_of_symbols_only_is_empty():
    assert clean("&&& !!") == ""


# --- compile_grammar() ---

def test_header_rules_come_first(apparel_tree):
    grammar = compile_grammar(apparel_tree)
    names = grammar.rule_names()
    assert names[:6] == ["root", "ws", "string", "char", "seperator", "taxonomy"]
    assert grammar.root == "root"
    assert grammar.get_rule("taxonomy").expression == r'"\"" taxonomy-inner "\""'
    assert grammar.get_rule("seperator").expression == '" > "'


def test_rules_in_preorder(apparel_tree):
    grammar = compile_grammar(apparel_tree)
    assert grammar.rule_names()[len(HEADER_RULES):] == [
        "taxonomy-inner",
        "taxonomy-apparel-accessories-children",
        "taxonomy-clothing",
        "taxonomy-clothing-children",
        "taxonomy-clothing-tops",
        "taxonomy-clothing-tops-children",
        "taxonomy-t-shirts",
        "taxonomy-suits",
        "taxonomy-jewelry",
        "taxonomy-jewelry-children",
        "taxonomy-watches",
    ]


def test_one_rule_per_node_plus_children_rules(apparel_tree):
    grammar = compile_grammar(apparel_tree)
    nodes = list(apparel_tree.walk())
    internal = [n for n in nodes if not n.is_leaf]
    assert len(grammar.rules) == len(HEADER_RULES) + len(nodes) + len(internal)


def test_root_continuation_is_required(apparel_tree):
    grammar = compile_grammar(apparel_tree)
    assert grammar.get_rule(ROOT_NODE_RULE).expression == (
        '"Apparel & Accessories" (seperator taxonomy-apparel-accessories-children)'
    )


def test_internal_node_continuation_is_optional(apparel_tree):
    grammar = compile_grammar(apparel_tree)
    assert grammar.get_rule("taxonomy-clothing").expression == (
        '"Clothing" (seperator taxonomy-clothing-children)?'
    )


def test_leaf_is_plain_literal(apparel_tree):
    grammar = compile_grammar(apparel_tree)
    assert grammar.get_rule("taxonomy-t-shirts").expression == '"T-Shirts"'
    assert grammar.get_rule("taxonomy-watches").expression == '"Watches"'


def test_children_alternation_keeps_document_order(apparel_tree):
    grammar = compile_grammar(apparel_tree)
    assert grammar.get_rule("taxonomy-clothing-children").expression == (
        "(\n\ttaxonomy-clothing-tops |\n\ttaxonomy-suits\n)"
    )
    assert grammar.get_rule("taxonomy-clothing-tops-children").expression == "(\n\ttaxonomy-t-shirts\n)"


def test_every_reference_resolves(apparel_tree):
    grammar = compile_grammar(apparel_tree)
    defined = set(grammar.rule_names())
    for rule in grammar.rules:
        assert set(rule.references()) <= defined, rule.name


def test_compile_is_deterministic(apparel_tree):
    assert compile_grammar(apparel_tree).to_text() == compile_grammar(apparel_tree).to_text()


def test_to_text_layout(apparel_tree):
    text = compile_grammar(apparel_tree).to_text()
    assert text.startswith('root ::= "{" ws "\\"title\\":" ws string')
    assert text.endswith('taxonomy-watches ::= "Watches"\n')
    assert "\n\ntaxonomy-inner ::= " in text


def test_single_node_tree():
    grammar = compile_grammar(make_node("aa", "Apparel & Accessories", 0))
    assert grammar.get_rule(ROOT_NODE_RULE).expression == '"Apparel & Accessories"'
    assert len(grammar.rules) == len(HEADER_RULES) + 1


def test_literals_are_escaped():
    tree = make_node("aa", "Apparel", 0, make_node("x", 'Size "XL" \\ Plus', 1))
    grammar = compile_grammar(tree)
    assert grammar.get_rule("taxonomy-size-xl-plus").expression == r'"Size \\\"XL\\\" \\\\ Plus"'


@pytest.mark.parametrize("name", ['Size "XL"', "Back\\Slash", "Plain Name", "Café"])
def test_literal_matches_valid_json_string(name):
    tree = make_node("aa", "Apparel", 0, make_node("x", name, 1))
    literal = compile_grammar(tree).get_rule(f"taxonomy-{clean(name)}").expression

    # text the grammar forces the model to emit, then read back as JSON
    emitted = re.sub(r"\\(.)", r"\1", literal[1:-1])
    assert json.loads(f'"{emitted}"') == name


def test_colliding_sibling_names_are_rejected():
    tree = make_node(
        "aa", "Apparel & Accessories", 0,
        make_node("a", "Men's Shoes", 1),
        make_node("b", "Men S Shoes", 1),
    )
    with pytest.raises(GrammarCompileError) as exc:
        compile_grammar(tree)
    message = str(exc.value)
    assert "taxonomy-men-s-shoes" in message
    assert "Men's Shoes" in message


def test_collision_across_branches_is_rejected():
    tree = make_node(
        "aa", "Apparel", 0,
        make_node("a", "Clothing", 1, make_node("a1", "Belts", 2)),
        make_node("b", "Accessories", 1, make_node("b1", "belts", 2)),
    )
    with pytest.raises(GrammarCompileError):
        compile_grammar(tree)


def test_collision_with_children_rule_is_rejected():
    tree = make_node(
        "aa", "Apparel", 0,
        make_node("a", "Clothing", 1, make_node("a1", "Tops", 2)),
        make_node("b", "Clothing Children", 1),
    )
    with pytest.raises(GrammarCompileError):
        compile_grammar(tree)


def test_child_colliding_with_root_rule_is_rejected():
    tree = make_node("aa", "Apparel", 0, make_node("a", "Inner", 1))
    with pytest.raises(GrammarCompileError):
        compile_grammar(tree)


def test_name_without_letters_or_digits_is_rejected():
    tree = make_node("aa", "Apparel", 0, make_node("bad", "&&&", 1))
    with pytest.raises(GrammarCompileError) as exc:
        compile_grammar(tree)
    assert "bad" in str(exc.value)


# --- Grammar model ---

def test_validate_references_reports_dangling_rule():
    grammar = Grammar(rules=[GrammarRule(name="root", expression='"a" missing-rule')])
    with pytest.raises(GrammarCompileError) as exc:
        grammar.validate_references()
    assert "missing-rule" in str(exc.value)


def test_validate_references_requires_root():
    grammar = Grammar(rules=[GrammarRule(name="other", expression='"a"')])
    with pytest.raises(GrammarCompileError):
        grammar.validate_references()


def test_references_skip_literals_and_classes():
    rule = GrammarRule(name="char", expression=r'[^"\\] | "\\" ["\\/bfnrt] | word "quoted text"')
    assert rule.references() == ["word"]


def test_taxonomy_paths(apparel_tree):
    paths = list(apparel_tree.paths())
    assert paths[0] == "Apparel & Accessories"
    assert "Apparel & Accessories > Clothing > Clothing Tops > T-Shirts" in paths
    assert len(paths) == len(list(apparel_tree.walk()))
