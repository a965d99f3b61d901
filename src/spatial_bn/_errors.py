"""Exceptions raised by the spatial batch-norm gradient operator."""


class SpatialBNError(Exception):
    """Base class for all errors raised by this package."""


class ShapeMismatchError(SpatialBNError, ValueError):
    """A tensor does not have the shape the operator requires."""


class GradientWiringError(SpatialBNError, ValueError):
    """The forward operator definition cannot be wired into a gradient op."""


class ArityMismatchError(GradientWiringError):
    """An operator definition has an unexpected number of inputs or outputs."""


class UnknownStorageOrderError(SpatialBNError, RuntimeError):
    """Storage order is neither NCHW nor NHWC."""
