"""
image2taxonomy

Turns product photographs into catalog records (title, description, taxonomy
path) using a local vision-language model constrained by a taxonomy grammar.
"""

__version__ = "0.1.0"
