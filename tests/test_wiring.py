"""Tests for SpatialBN gradient wiring and the workspace runner."""

import pytest
import torch


def _forward_def(is_test=None, num_inputs=5, num_outputs=None, order="NCHW"):
    inputs = ["X", "scale", "bias", "mean", "var"][:num_inputs]
    inputs += [f"extra_in_{i}" for i in range(num_inputs - len(inputs))]
    if num_outputs is None:
        num_outputs = 1 if is_test else 5
    outputs = ["Y", "running_mean", "running_var", "saved_mean", "saved_inv_std"][:num_outputs]
    outputs += [f"extra_out_{i}" for i in range(num_outputs - len(outputs))]
    args = {"order": order, "epsilon": 1e-5}
    if is_test is not None:
        args["is_test"] = is_test

    from spatial_bn import OperatorDef
    return OperatorDef("SpatialBN", inputs, outputs, args)


class TestPlanWiring:
    """Pure wiring decision from arity and mode."""

    def test_inference(self):
        from spatial_bn import plan_wiring, InferenceWiring

        wiring = plan_wiring(5, 1, is_test=True)

        assert wiring == InferenceWiring()
        assert [str(s) for s in wiring.grad_inputs] == ["I0", "I1", "GO0", "I3", "I4"]
        assert [str(s) for s in wiring.grad_outputs] == ["GI0", "GI1", "GI2"]

    def test_training(self):
        from spatial_bn import plan_wiring, TrainingWiring

        wiring = plan_wiring(5, 5)

        assert wiring == TrainingWiring()
        assert [str(s) for s in wiring.grad_inputs] == ["I0", "I1", "GO0", "O3", "O4"]
        assert [str(s) for s in wiring.grad_outputs] == ["GI0", "GI1", "GI2"]

    @pytest.mark.parametrize("num_inputs, num_outputs, is_test", [
        (4, 1, True),
        (6, 1, True),
        (5, 5, True),
        (5, 0, True),
        (5, 1, False),
        (5, 4, False),
        (3, 5, False),
    ])
    def test_arity_mismatch(self, num_inputs, num_outputs, is_test):
        from spatial_bn import plan_wiring, ArityMismatchError

        with pytest.raises(ArityMismatchError):
            plan_wiring(num_inputs, num_outputs, is_test)

    def test_error_hierarchy(self):
        from spatial_bn import ArityMismatchError, GradientWiringError, SpatialBNError

        assert issubclass(ArityMismatchError, GradientWiringError)
        assert issubclass(ArityMismatchError, ValueError)
        assert issubclass(GradientWiringError, SpatialBNError)


class TestGradientDefs:
    """Gradient operator definitions emitted for a recorded forward op."""

    def test_inference_def(self):
        from spatial_bn import gradient_defs_for

        defs = gradient_defs_for(_forward_def(is_test=1))

        assert len(defs) == 1
        grad = defs[0]
        assert grad.type == "SpatialBNGradient"
        assert grad.inputs == ["X", "scale", "Y_grad", "mean", "var"]
        assert grad.outputs == ["X_grad", "scale_grad", "bias_grad"]

    def test_training_def_without_is_test(self):
        from spatial_bn import spatial_bn_gradient_defs

        grad, = spatial_bn_gradient_defs(_forward_def())

        assert grad.inputs == ["X", "scale", "Y_grad", "saved_mean", "saved_inv_std"]
        assert grad.outputs == ["X_grad", "scale_grad", "bias_grad"]

    def test_is_test_zero_is_training(self):
        from spatial_bn import spatial_bn_gradient_defs

        grad, = spatial_bn_gradient_defs(_forward_def(is_test=0, num_outputs=5))
        assert grad.inputs[3:] == ["saved_mean", "saved_inv_std"]

    def test_boolean_is_test(self):
        from spatial_bn import spatial_bn_gradient_defs

        grad, = spatial_bn_gradient_defs(_forward_def(is_test=True))
        assert grad.inputs[3:] == ["mean", "var"]

    def test_arguments_copied(self):
        from spatial_bn import spatial_bn_gradient_defs

        forward = _forward_def(is_test=1, order="NHWC")
        grad, = spatial_bn_gradient_defs(forward)

        assert grad.args["order"] == "NHWC"
        assert grad.args["epsilon"] == 1e-5
        assert grad.args is not forward.args

    def test_non_integer_is_test(self):
        from spatial_bn import spatial_bn_gradient_defs, GradientWiringError

        with pytest.raises(GradientWiringError):
            spatial_bn_gradient_defs(_forward_def(is_test="1"))
        with pytest.raises(GradientWiringError):
            spatial_bn_gradient_defs(_forward_def(is_test=1.0))

    @pytest.mark.parametrize("is_test, num_inputs, num_outputs", [
        (1, 4, 1),
        (1, 5, 2),
        (None, 5, 1),
        (0, 5, 3),
    ])
    def test_arity_mismatch(self, is_test, num_inputs, num_outputs):
        from spatial_bn import spatial_bn_gradient_defs, ArityMismatchError

        with pytest.raises(ArityMismatchError):
            spatial_bn_gradient_defs(_forward_def(is_test, num_inputs, num_outputs))

    def test_unregistered_forward(self):
        from spatial_bn import OperatorDef, gradient_defs_for

        with pytest.raises(KeyError):
            gradient_defs_for(OperatorDef("Relu", ["X"], ["Y"]))


class TestWorkspace:
    """Running wired gradient definitions against named tensors."""

    def _feed_case(self, ws, names, order):
        torch.manual_seed(42)
        shape = (2, 3, 4, 4) if order == "NCHW" else (2, 4, 4, 3)
        tensors = {
            names[0]: torch.randn(*shape),
            names[1]: torch.rand(3) + 0.5,
            names[2]: torch.randn(*shape),
            names[3]: torch.randn(3),
            names[4]: torch.rand(3) + 0.5,
        }
        for name, tensor in tensors.items():
            ws.feed(name, tensor)
        return [tensors[name] for name in names]

    @pytest.mark.parametrize("is_test, order", [(None, "NCHW"), (1, "NHWC")])
    def test_end_to_end(self, is_test, order):
        from spatial_bn import Workspace, gradient_defs_for, spatial_bn_backward

        grad, = gradient_defs_for(_forward_def(is_test=is_test, order=order))
        ws = Workspace()
        X, scale, dY, mean, inv_std = self._feed_case(ws, grad.inputs, order)

        ws.run_operator(grad)

        expected = spatial_bn_backward(X, dY, scale, mean, inv_std, order)
        for name, tensor in zip(grad.outputs, expected):
            assert torch.equal(ws.fetch(name), tensor)

    def test_existing_outputs_reused(self):
        from spatial_bn import Workspace, gradient_defs_for

        grad, = gradient_defs_for(_forward_def())
        ws = Workspace()
        X, *_ = self._feed_case(ws, grad.inputs, "NCHW")
        stale = torch.full((1,), 5.0)
        ws.feed("X_grad", stale)

        ws.run_operator(grad)

        assert ws.fetch("X_grad") is stale
        assert stale.shape == X.shape

    def test_missing_blob(self):
        from spatial_bn import Workspace, gradient_defs_for

        grad, = gradient_defs_for(_forward_def())
        ws = Workspace()
        ws.feed("X", torch.randn(2, 3, 4, 4))

        with pytest.raises(KeyError):
            ws.run_operator(grad)

    def test_schema_arity_enforced(self):
        from spatial_bn import Workspace, OperatorDef, ArityMismatchError

        bad = OperatorDef("SpatialBNGradient", ["X", "scale", "dY", "mean"], ["dX", "dScale", "dBias"])
        with pytest.raises(ArityMismatchError):
            Workspace().run_operator(bad)

    def test_unknown_operator(self):
        from spatial_bn import Workspace, OperatorDef

        with pytest.raises(KeyError):
            Workspace().run_operator(OperatorDef("Conv", ["X", "W"], ["Y"]))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
