"""QSL Confirm - tamper-evident receipt confirmation for mailed QSL cards.

A sender issues a short, human-writable token bound to a logged contact
(QSO record). The token is printed on the card together with a signed
confirmation link; the recipient proves receipt by presenting it once.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
