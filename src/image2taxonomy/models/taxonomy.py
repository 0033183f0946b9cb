import re
from collections import Counter
from typing import Iterator, List

from pydantic import BaseModel, ConfigDict, Field

from image2taxonomy.exception import GrammarCompileError

# String literals and character classes are skipped when scanning a rule
# expression for references to other rules.
_LITERAL_OR_CLASS = re.compile(r'"(?:[^"\\]|\\.)*"|\[(?:[^\]\\]|\\.)*\]')
_RULE_REFERENCE = re.compile(r"[A-Za-z][A-Za-z0-9-]*")


class TaxonomyNode(BaseModel):
    """
    One category of a taxonomy vertical. Depth 0 is the vertical root.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Identifier from the taxonomy document")
    name: str = Field(..., description="Display name, used verbatim in taxonomy paths")
    depth: int = Field(..., ge=0, description="0 for the vertical root")
    children: List["TaxonomyNode"] = Field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def walk(self) -> Iterator["TaxonomyNode"]:
        """Depth-first pre-order traversal, children in document order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def paths(self, separator: str = " > ") -> Iterator[str]:
        """Every root-to-node path string reachable from this node."""
        yield self.name
        for child in self.children:
            for sub_path in child.paths(separator):
                yield f"{self.name}{separator}{sub_path}"


class GrammarRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    expression: str

    def references(self) -> List[str]:
        """Rule names used by this rule's expression, in order of appearance."""
        stripped = _LITERAL_OR_CLASS.sub(" ", self.expression)
        return _RULE_REFERENCE.findall(stripped)

    def render(self) -> str:
        return f"{self.name} ::= {self.expression}"


class Grammar(BaseModel):
    """
    GBNF grammar: ordered production rules plus the designated root rule.
    """
    root: str = "root"
    rules: List[GrammarRule] = Field(default_factory=list)

    def rule_names(self) -> List[str]:
        return [rule.name for rule in self.rules]

    def get_rule(self, name: str) -> GrammarRule:
        for rule in self.rules:
            if rule.name == name:
                return rule
        raise KeyError(name)

    def validate_references(self) -> None:
        """
        Every referenced rule must be defined exactly once and the root
        rule must exist.
        """
        counts = Counter(self.rule_names())
        duplicates = sorted(name for name, count in counts.items() if count > 1)
        if duplicates:
            raise GrammarCompileError(f"Rules defined more than once: {', '.join(duplicates)}")

        if self.root not in counts:
            raise GrammarCompileError(f"Root rule '{self.root}' is not defined")

        dangling = []
        for rule in self.rules:
            for ref in rule.references():
                if ref not in counts and ref not in dangling:
                    dangling.append(ref)
        if dangling:
            raise GrammarCompileError(f"Undefined rules referenced: {', '.join(dangling)}")

    def to_text(self) -> str:
        return "\n\n".join(rule.render() for rule in self.rules) + "\n"
