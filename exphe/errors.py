"""
Error kinds raised by the scheme engine.

ConfigurationError and SearchExhausted are fatal and reach the caller.
OrderComputationTimeout and FactorizationTimeout are raised by the number
theory helpers and recovered by the classifier as an Unknown record.
"""


class SchemeError(Exception):
    """Base class for every error raised by exphe."""


class ConfigurationError(SchemeError):
    """Parameters that cannot produce valid messages or ciphertexts."""


class SearchExhausted(SchemeError):
    """A bounded rejection-sampling loop ran out of attempts."""

    def __init__(self, what: str, attempts: int, rejected: tuple = (), message=None):
        super().__init__(f"could not find {what} after {attempts} attempts")
        self.what = what
        self.attempts = attempts
        self.rejected = rejected
        self.message = message


class OrderComputationTimeout(SchemeError):
    def __init__(self, base: int, modulus: int, iterations: int):
        super().__init__(
            f"order of {base} mod {modulus} not found within {iterations} iterations"
        )
        self.base = base
        self.modulus = modulus
        self.iterations = iterations


class FactorizationTimeout(SchemeError):
    def __init__(self, value: int, iterations: int):
        super().__init__(f"could not factor {value} within {iterations} iterations")
        self.value = value
        self.iterations = iterations
