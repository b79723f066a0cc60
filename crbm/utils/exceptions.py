class CRBMError(Exception):
    """Base class of every error raised by a CRBM layer."""


class InvalidConfigurationError(CRBMError, ValueError):
    """The layer dimensions do not describe a valid convolution."""


class UnitTypeError(CRBMError, ValueError):
    """The visible/hidden unit combination has no activation rule."""


class NumericalIntegrityError(CRBMError, ArithmeticError):
    """An activation tensor contains NaN or infinite values."""


class ShapeMismatchError(CRBMError, ValueError):
    """An input cannot be converted to the shape the layer expects."""
