"""Operator and gradient-maker registries."""

import logging
from typing import Callable, Dict, List, NamedTuple, Tuple

from ._errors import ArityMismatchError

logger = logging.getLogger(__name__)


class OpSchema(NamedTuple):
    """Fixed input/output arity an operator declares."""

    num_inputs: int
    num_outputs: int

    def check(self, op_def) -> None:
        if len(op_def.inputs) != self.num_inputs or len(op_def.outputs) != self.num_outputs:
            raise ArityMismatchError(
                f"{op_def.type} expects {self.num_inputs} inputs and {self.num_outputs} outputs, "
                f"got {len(op_def.inputs)} inputs and {len(op_def.outputs)} outputs"
            )


_OPERATORS: Dict[str, Tuple[type, OpSchema]] = {}
_GRADIENTS: Dict[str, Callable] = {}


def register_operator(op_type: str, num_inputs: int, num_outputs: int):
    """Class decorator registering an operator implementation under `op_type`."""
    def decorator(cls):
        _OPERATORS[op_type] = (cls, OpSchema(num_inputs, num_outputs))
        logger.debug("Registered operator %s (%d -> %d)", op_type, num_inputs, num_outputs)
        return cls
    return decorator


def register_gradient(op_type: str):
    """Decorator registering the gradient maker of a forward operator type."""
    def decorator(fn):
        _GRADIENTS[op_type] = fn
        logger.debug("Registered gradient maker for %s", op_type)
        return fn
    return decorator


def get_operator(op_type: str) -> Tuple[type, OpSchema]:
    try:
        return _OPERATORS[op_type]
    except KeyError:
        raise KeyError(f"No operator registered for type {op_type!r}") from None


def gradient_defs_for(op_def) -> List:
    """Return the gradient operator definitions of a forward operator definition."""
    try:
        maker = _GRADIENTS[op_def.type]
    except KeyError:
        raise KeyError(f"No gradient registered for operator type {op_def.type!r}") from None
    return maker(op_def)
