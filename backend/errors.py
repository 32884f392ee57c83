class InvalidInputError(ValueError):
    """Malformed wallet address or transaction record."""


class UpstreamError(RuntimeError):
    """A call to Etherscan or CoinGecko failed; fatal for the whole request."""
