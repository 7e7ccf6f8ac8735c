"""
Exception hierarchy for the transaction-chain builder.

Every failure surfaced by buildTransactions / create_inscription_psbt is a
PreInscriberError. The intermediate classes group failures by cause so
callers can react to a whole family (e.g. every ValidationError means the
seller side must re-sign) without matching individual messages.
"""


class PreInscriberError(Exception):
    """Base class for all errors raised by preinscribe_lib."""


class InputError(PreInscriberError, ValueError):
    """Malformed or missing caller parameters."""


class UnsupportedAddressType(InputError):
    """Address type cannot be used for the requested role."""


class ValidationError(PreInscriberError):
    """A seller-signed PSBT failed ownership / unmoved checks."""


class InvalidSellerPst(ValidationError):
    """Seller PSBT is missing the data needed to validate it."""


class InscriptionNotFound(ValidationError):
    """The inscription index has no record at the referenced outpoint."""


class InscriptionOwnershipMismatch(ValidationError):
    """The indexed owner differs from the address that signed the PSBT."""


class ResourceError(PreInscriberError):
    """Buyer funds cannot cover the requested chain."""


class NoSpendableUtxos(ResourceError):
    """The buyer address has no spendable UTXOs."""


class InsufficientFunds(ResourceError):
    """Coin selection found no input combination covering the outputs."""


class NoOutputSelected(ResourceError):
    """Coin selection returned no outputs."""


class ScriptSupportError(PreInscriberError):
    """An output or input uses a script family we cannot spend."""


class UnsupportedScriptType(ScriptSupportError):
    """Script type outside of {p2tr, p2wpkh} (or p2sh for buyer funding)."""


class AddressDerivationError(PreInscriberError):
    """Taproot construction failed."""


class AddressConstructionError(AddressDerivationError):
    """No address could be derived for a commitment tree."""


class ConvergenceError(PreInscriberError):
    """The CPFP fee loop did not reach a fixed point."""


class FeeConvergenceTimeout(ConvergenceError):
    """The CPFP fee loop exceeded its iteration bound."""


class DatasourceError(PreInscriberError):
    """Transport or RPC failure while talking to the indexer."""
