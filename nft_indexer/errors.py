"""Error taxonomy for the indexer."""


class IndexerError(Exception):
    """Base class for indexer failures."""


class ChainCommunicationError(IndexerError):
    """RPC or transport failure talking to the ledger."""


class AbiMismatchError(IndexerError):
    """Method missing from the ABI, or arguments/results that do not decode."""


class NotFoundError(IndexerError):
    """No matching row (or no contract code where one was expected)."""


class UnknownEventError(IndexerError):
    """Log topic outside the recognized vocabulary where decoding must succeed."""


class MetadataFetchError(IndexerError):
    """Token metadata document unreachable or malformed."""
