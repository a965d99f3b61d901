"""Gradient wiring for SpatialBN.

The forward SpatialBN operator exposes different tensors as "the statistics
used for this batch" depending on its mode:

- training (is_test absent or 0)
    inputs:  X, scale, bias, running_mean, running_var
    outputs: Y, running_mean, running_var, saved_mean, saved_inv_std
  The gradient reads the statistics the forward pass computed for this batch
  (outputs 3 and 4).

- inference (is_test = 1)
    inputs:  X, scale, bias, estimated_mean, estimated_inv_std
    outputs: Y
  Nothing was computed, so the gradient reads the supplied estimates
  (inputs 3 and 4).

Either way the gradient op produces dX, dScale, dBias for forward inputs 0, 1, 2.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Tuple, Union

from ._errors import ArityMismatchError, GradientWiringError
from ._registry import register_gradient

logger = logging.getLogger(__name__)

GRADIENT_SUFFIX = "_grad"


def grad_name(blob: str) -> str:
    """Name of the gradient blob of `blob`."""
    return blob + GRADIENT_SUFFIX


@dataclass
class OperatorDef:
    """Declarative operator invocation: type, named inputs/outputs and arguments."""

    type: str
    inputs: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    args: Dict[str, Any] = field(default_factory=dict)
    name: str = ""

    def has_arg(self, key: str) -> bool:
        return key in self.args

    def get_arg(self, key: str, default: Any = None) -> Any:
        return self.args.get(key, default)


class Slot(NamedTuple):
    """Symbolic reference to a blob of the forward operator.

    kind is one of "I" (input), "O" (output), "GI" (gradient of an input)
    or "GO" (gradient of an output).
    """

    kind: str
    index: int

    def resolve(self, forward: OperatorDef) -> str:
        if self.kind == "I":
            return forward.inputs[self.index]
        if self.kind == "O":
            return forward.outputs[self.index]
        if self.kind == "GI":
            return grad_name(forward.inputs[self.index])
        if self.kind == "GO":
            return grad_name(forward.outputs[self.index])
        raise GradientWiringError(f"Unknown slot kind: {self.kind!r}")

    def __str__(self) -> str:
        return f"{self.kind}{self.index}"


def inp(i: int) -> Slot:
    return Slot("I", i)


def out(i: int) -> Slot:
    return Slot("O", i)


def grad_inp(i: int) -> Slot:
    return Slot("GI", i)


def grad_out(i: int) -> Slot:
    return Slot("GO", i)


class _Wiring:
    num_inputs: int
    num_outputs: int
    grad_inputs: Tuple[Slot, ...]
    grad_outputs: Tuple[Slot, ...] = (grad_inp(0), grad_inp(1), grad_inp(2))

    def bind(self, forward: OperatorDef) -> Tuple[List[str], List[str]]:
        """Resolve the gradient slots to blob names of `forward`."""
        return (
            [slot.resolve(forward) for slot in self.grad_inputs],
            [slot.resolve(forward) for slot in self.grad_outputs],
        )


@dataclass(frozen=True)
class InferenceWiring(_Wiring):
    """Forward ran with is_test=1: 5 inputs, 1 output."""

    num_inputs: int = 5
    num_outputs: int = 1
    grad_inputs: Tuple[Slot, ...] = (inp(0), inp(1), grad_out(0), inp(3), inp(4))
    is_test: bool = True


@dataclass(frozen=True)
class TrainingWiring(_Wiring):
    """Forward computed the batch statistics: 5 inputs, 5 outputs."""

    num_inputs: int = 5
    num_outputs: int = 5
    grad_inputs: Tuple[Slot, ...] = (inp(0), inp(1), grad_out(0), out(3), out(4))
    is_test: bool = False


Wiring = Union[InferenceWiring, TrainingWiring]


def plan_wiring(num_inputs: int, num_outputs: int, is_test: bool = False) -> Wiring:
    """
    Pick the gradient wiring for a forward op with the given arity and mode.

    Args:
        num_inputs: Number of inputs of the forward op
        num_outputs: Number of outputs of the forward op
        is_test: Whether the forward op ran in inference mode

    Returns:
        InferenceWiring or TrainingWiring

    Raises:
        ArityMismatchError: the arity does not match what the mode requires
    """
    wiring = InferenceWiring() if is_test else TrainingWiring()
    if num_inputs != wiring.num_inputs or num_outputs != wiring.num_outputs:
        mode = "inference" if is_test else "training"
        raise ArityMismatchError(
            f"SpatialBN in {mode} mode must have {wiring.num_inputs} inputs and "
            f"{wiring.num_outputs} outputs, got {num_inputs} inputs and {num_outputs} outputs"
        )
    return wiring


def read_is_test(forward: OperatorDef) -> bool:
    """Read the optional integer `is_test` argument; absent means training."""
    if not forward.has_arg("is_test"):
        return False
    value = forward.get_arg("is_test")
    # bool is a subclass of int
    if not isinstance(value, int):
        raise GradientWiringError(
            f"Argument is_test must be an integer, got {type(value).__name__}"
        )
    return bool(value)


@register_gradient("SpatialBN")
def spatial_bn_gradient_defs(forward: OperatorDef) -> List[OperatorDef]:
    """
    Build the SpatialBNGradient definition for a recorded SpatialBN definition.

    The forward arguments (order, epsilon, ...) are copied so the gradient op
    runs with the same layout.
    """
    wiring = plan_wiring(len(forward.inputs), len(forward.outputs), read_is_test(forward))
    grad_inputs, grad_outputs = wiring.bind(forward)
    logger.debug(
        "Wired %s gradient: %s -> %s",
        type(wiring).__name__, grad_inputs, grad_outputs,
    )
    return [
        OperatorDef(
            type="SpatialBNGradient",
            inputs=grad_inputs,
            outputs=grad_outputs,
            args=dict(forward.args),
        )
    ]
