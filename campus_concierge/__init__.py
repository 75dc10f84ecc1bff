"""
Campus Concierge: query resolution for campus navigation questions

This package turns free-text student questions ("where is the ID card office",
"take me to the library") into a structured answer:
- a natural-language message
- the matched campus locations with coordinates
- a UI action (show a route, highlight one place, or list several)

Matching is deterministic first; a generative model is only consulted when the
lexical rules are inconclusive.
"""

__version__ = "0.1.0"
