import pytest

from image2taxonomy.models import TaxonomyNode


def node(node_id, name, depth, *children):
    return TaxonomyNode(id=node_id, name=name, depth=depth, children=list(children))


@pytest.fixture
def apparel_tree():
    """
    Apparel & Accessories
        Clothing
            Clothing Tops
                T-Shirts
            Suits
        Jewelry
            Watches
    """
    return node(
        "aa", "Apparel & Accessories", 0,
        node("aa-1", "Clothing", 1,
             node("aa-1-1", "Clothing Tops", 2,
                  node("aa-1-1-1", "T-Shirts", 3)),
             node("aa-1-2", "Suits", 2)),
        node("aa-6", "Jewelry", 1,
             node("aa-6-1", "Watches", 2)),
    )


@pytest.fixture
def taxonomy_document():
    """Shopify product taxonomy JSON trimmed to one small vertical."""
    return {
        "version": "2025-01",
        "verticals": [
            {
                "name": "Animals & Pet Supplies",
                "prefix": "ap",
                "categories": [
                    {"id": "gid://shopify/TaxonomyCategory/ap", "name": "Animals & Pet Supplies",
                     "level": 0, "children": []},
                ],
            },
            {
                "name": "Apparel & Accessories",
                "prefix": "aa",
                "categories": [
                    {"id": "aa", "name": "Apparel & Accessories", "level": 0,
                     "children": [{"id": "aa-1", "name": "Clothing"}, {"id": "aa-6", "name": "Jewelry"}]},
                    {"id": "aa-1", "name": "Clothing", "level": 1,
                     "children": [{"id": "aa-1-1", "name": "Clothing Tops"}, {"id": "aa-1-2", "name": "Suits"}]},
                    {"id": "aa-1-1", "name": "Clothing Tops", "level": 2,
                     "children": [{"id": "aa-1-1-1", "name": "T-Shirts"}]},
                    {"id": "aa-1-1-1", "name": "T-Shirts", "level": 3, "children": []},
                    {"id": "aa-1-2", "name": "Suits", "level": 2, "children": []},
                    {"id": "aa-6", "name": "Jewelry", "level": 1,
                     "children": [{"id": "aa-6-1", "name": "Watches"}]},
                    {"id": "aa-6-1", "name": "Watches", "level": 2, "children": []},
                ],
            },
        ],
    }
