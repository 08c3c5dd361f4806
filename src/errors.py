class MultiplierConfigError(ValueError):
    """Invalid multiplier parameters, detected while building the circuit"""


class CompressionError(RuntimeError):
    """A column compressor was driven out of order"""
