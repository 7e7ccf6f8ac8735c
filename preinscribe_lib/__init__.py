"""
Inscription purchase with sniping protection

Builds the chained PSBTs (funding, purchase, CPFP withdraw) that let a buyer
take inscriptions from a seller through an escrow key without exposing the
funding output to a rebroadcasting seller.
"""

__version__ = "0.1.0"
__license__ = "GPL-3.0"

__all__ = [
    "__version__",
    "__license__",
]
