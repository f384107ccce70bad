"""Tests for architecture descriptors and their translation into torch modules."""

import pytest
import torch
from pydantic import ValidationError

from modelhub.schemas.layers import ArchitectureSpec, dump_layers, parse_layers
from modelhub.services.layer_builder import LayerBuildError, build_blocks, resolve_input_shape


class TestDescriptorValidation:
    def test_unknown_layer_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_layers([{"type": "attention", "config": {"units": 4}}])

    def test_missing_required_config_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_layers([{"type": "dense", "config": {"activation": "relu"}}])

    def test_dropout_rate_bounds(self):
        with pytest.raises(ValidationError):
            parse_layers([{"type": "dropout", "config": {"rate": 1.0}}])

    def test_camel_case_round_trip(self):
        layers = parse_layers([
            {"type": "dense", "config": {"units": 3, "inputShape": [4], "useBias": False}},
            {"type": "flatten"},
        ])
        dumped = dump_layers(layers)
        assert dumped[0] == {
            "type": "dense",
            "config": {"inputShape": [4], "units": 3, "activation": "linear", "useBias": False},
        }
        assert dumped[1] == {"type": "flatten", "config": {}}

    def test_architecture_needs_at_least_one_layer(self):
        with pytest.raises(ValidationError):
            ArchitectureSpec(layers=[])


class TestBlockShapes:
    def _build(self, raw, input_shape=None):
        layers = parse_layers(raw)
        return build_blocks(layers, resolve_input_shape(layers, input_shape))

    def test_dense_stack(self):
        blocks = self._build([
            {"type": "dense", "config": {"units": 8, "activation": "relu", "inputShape": [5]}},
            {"type": "dense", "config": {"units": 2, "activation": "softmax"}},
        ])
        assert [b.out_shape for b in blocks] == [(8,), (2,)]
        assert blocks[0].count_params() == 5 * 8 + 8

        x = torch.rand(3, 5)
        for b in blocks:
            x = b(x)
        assert x.shape == (3, 2)
        assert torch.allclose(x.sum(dim=-1), torch.ones(3), atol=1e-5)

    def test_conv_pool_flatten_chain(self):
        blocks = self._build(
            [
                {"type": "conv2d", "config": {"filters": 4, "kernelSize": 3, "activation": "relu"}},
                {"type": "maxPooling2d", "config": {"poolSize": 2}},
                {"type": "flatten"},
                {"type": "dense", "config": {"units": 1, "activation": "sigmoid"}},
            ],
            input_shape=[8, 8, 1],
        )
        assert [b.out_shape for b in blocks] == [(6, 6, 4), (3, 3, 4), (36,), (1,)]

        x = torch.rand(2, 8, 8, 1)
        for b in blocks:
            x = b(x)
        assert x.shape == (2, 1)

    def test_recurrent_last_step_and_sequence(self):
        blocks = self._build(
            [
                {"type": "lstm", "config": {"units": 6, "returnSequences": True}},
                {"type": "batchNormalization"},
                {"type": "gru", "config": {"units": 3}},
            ],
            input_shape=[7, 2],
        )
        assert [b.out_shape for b in blocks] == [(7, 6), (7, 6), (3,)]

        x = torch.rand(4, 7, 2)
        for b in blocks:
            x = b(x)
        assert x.shape == (4, 3)

    def test_shape_mismatch_names_the_layer(self):
        with pytest.raises(LayerBuildError, match=r"Layer 1 \(conv2d\)"):
            self._build([
                {"type": "dense", "config": {"units": 4, "inputShape": [3]}},
                {"type": "conv2d", "config": {"filters": 2, "kernelSize": 2}},
            ])

    def test_missing_input_shape(self):
        with pytest.raises(LayerBuildError, match="inputShape"):
            self._build([{"type": "dense", "config": {"units": 4}}])

    def test_dropout_has_no_trainable_parameters(self):
        blocks = self._build([{"type": "dropout", "config": {"rate": 0.5, "inputShape": [4]}}])
        assert blocks[0].count_params() == 0
        assert blocks[0].trainable is False
