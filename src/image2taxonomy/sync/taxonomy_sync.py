"""
taxonomy_sync.py

Build-time sync process:
    1. Load the taxonomy document (Shopify product taxonomy JSON, URL or file)
    2. Pick one vertical and rebuild its category tree
    3. Compile the tree into a GBNF grammar
    4. Write the grammar artifact the worker loads at startup

Always full refresh.
"""

import json
import os
import sys
from typing import Any, Dict, List, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from image2taxonomy.exception import CustomException, TaxonomyError
from image2taxonomy.grammar.compiler import compile_grammar
from image2taxonomy.logger import get_logger
from image2taxonomy.models import TaxonomyNode

logger = get_logger(__name__)

FETCH_TIMEOUT = 60


@retry(
    reraise=True,
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
)
def _download(url: str) -> Dict[str, Any]:
    """GET the taxonomy document with exponential backoff on transient errors."""
    response = requests.get(url, timeout=FETCH_TIMEOUT)
    response.raise_for_status()
    return response.json()


def fetch_taxonomy_document(source: str) -> Dict[str, Any]:
    """
    Load the taxonomy document from an http(s) URL or a local JSON file.
    """
    try:
        if source.startswith(("http://", "https://")):
            logger.info(f"Fetching latest taxonomy from {source}")
            return _download(source)

        logger.info(f"Reading taxonomy from {source}")
        with open(source, "r", encoding="utf-8") as f:
            return json.load(f)
    except (requests.RequestException, OSError, ValueError) as e:
        raise TaxonomyError(f"Could not load taxonomy document from {source}: {e}")


def _find_vertical(document: Dict[str, Any], vertical_name: str) -> Dict[str, Any]:
    for vertical in document.get("verticals") or []:
        if vertical.get("name") == vertical_name:
            return vertical
    raise TaxonomyError(f"base category not found: {vertical_name}")


def build_taxonomy_tree(document: Dict[str, Any], vertical_name: str) -> TaxonomyNode:
    """
    Rebuild the category tree of one vertical.

    The document lists every category of a vertical flat, each with a
    level and references to its children by id. The tree is rebuilt from
    the level-0 category, keeping the listed child order.
    """
    vertical = _find_vertical(document, vertical_name)
    categories: List[Dict[str, Any]] = vertical.get("categories") or []
    by_id = {str(c.get("id")): c for c in categories}

    roots = [c for c in categories if c.get("level") == 0]
    if len(roots) != 1:
        raise TaxonomyError(
            f"Vertical '{vertical_name}' must have exactly one level-0 category, found {len(roots)}"
        )

    logger.info(f"Found {len(categories)} categories in vertical '{vertical_name}'")

    def build(category: Dict[str, Any], depth: int, trail: tuple) -> TaxonomyNode:
        cat_id = str(category.get("id"))
        name = str(category.get("name") or "").strip()
        if not name:
            raise TaxonomyError(f"Category {cat_id} has no name")

        level = category.get("level")
        if level is not None and level != depth:
            raise TaxonomyError(f"Category '{name}' ({cat_id}) declares level {level} but sits at depth {depth}")

        if cat_id in trail:
            raise TaxonomyError(f"Cycle detected at category '{name}' ({cat_id})")

        children = []
        sibling_names = set()
        for ref in category.get("children") or []:
            child_id = str(ref.get("id"))
            child = by_id.get(child_id)
            if child is None:
                raise TaxonomyError(f"Category '{name}' references unknown child {child_id}")
            child_node = build(child, depth + 1, trail + (cat_id,))
            if child_node.name in sibling_names:
                raise TaxonomyError(f"Category '{name}' has two children named '{child_node.name}'")
            sibling_names.add(child_node.name)
            children.append(child_node)

        return TaxonomyNode(id=cat_id, name=name, depth=depth, children=children)

    return build(roots[0], 0, ())


class TaxonomySync:
    def __init__(self, source: str, vertical: str, output_path: str):
        self.source = source
        self.vertical = vertical
        self.output_path = output_path
        logger.info(f"Initialized TaxonomySync (vertical='{vertical}', output='{output_path}').")

    # ------------------------------------------------------
    # MAIN SYNC
    # ------------------------------------------------------
    def sync(self) -> str:
        """
        Full sync:
            → Load taxonomy document
            → Build the vertical's tree
            → Compile grammar
            → Write grammar artifact
        """
        try:
            logger.info("Starting taxonomy SYNC...")

            document = fetch_taxonomy_document(self.source)
            tree = build_taxonomy_tree(document, self.vertical)
            grammar = compile_grammar(tree)

            self._write_grammar(grammar.to_text())

            logger.info(f"Taxonomy grammar file written to {self.output_path}")
            return self.output_path

        except CustomException:
            raise
        except Exception as e:
            logger.error(f"Sync failed: {e}")
            raise CustomException(e, sys)

    def _write_grammar(self, text: str):
        directory = os.path.dirname(os.path.abspath(self.output_path))
        os.makedirs(directory, exist_ok=True)
        with open(self.output_path, "w", encoding="utf-8") as f:
            f.write(text)


def main(argv: Optional[List[str]] = None) -> int:
    import argparse

    from image2taxonomy.utils.load_config import load_settings

    parser = argparse.ArgumentParser(description="Compile the taxonomy grammar used by the worker.")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--source", help="Taxonomy document URL or JSON file")
    parser.add_argument("--vertical", help="Vertical name, e.g. 'Apparel & Accessories'")
    parser.add_argument("--output", help="Where to write the .gbnf file")
    args = parser.parse_args(argv)

    try:
        source, vertical, output = args.source, args.vertical, args.output
        if not (source and vertical and output):
            settings = load_settings(config_path=args.config)
            source = source or settings.taxonomy.source
            vertical = vertical or settings.taxonomy.vertical
            output = output or settings.taxonomy.grammar_path

        syncer = TaxonomySync(source=source, vertical=vertical, output_path=output)
        syncer.sync()
    except CustomException as e:
        logger.error(f"Failed to build taxonomy grammar: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
