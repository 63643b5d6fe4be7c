"""
Tests for the training driver.

Tests cover:
- TrainingConfig validation and camelCase keys
- Automatic classification head for the dataset's class count
- Epoch loop: events, validation split, early stop
- End-to-end start_training with test evaluation
- Evaluation, prediction and disposal
"""

import logging

import numpy as np
import pytest


def vector_dataset(train_size=96, test_size=24):
    """Three separable classes: the label is the argmax of the first 3 features."""
    from nn_designer.datasets import ArrayDataset

    np.random.seed(42)
    train_inputs = np.random.randn(train_size, 4)
    test_inputs = np.random.randn(test_size, 4)
    return ArrayDataset(
        "blobs",
        train_inputs,
        train_inputs[:, :3].argmax(axis=1),
        test_inputs,
        test_inputs[:, :3].argmax(axis=1),
    )


def dense_layers():
    return [
        {"type": "input", "params": {"shape": [4]}},
        {"type": "dense", "params": {"units": 16, "activation": "relu"}},
    ]


class TestTrainingConfig:
    def test_defaults(self):
        from nn_designer.training import TrainingConfig

        config = TrainingConfig()
        assert config.optimizer == "adam"
        assert config.loss == "categoricalCrossentropy"
        assert config.max_grad_norm is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"epochs": 0},
            {"batch_size": 0},
            {"learning_rate": 0.0},
            {"optimizer": "adagrad"},
            {"loss": "hinge"},
            {"validation_split": 1.0},
            {"max_grad_norm": -1.0},
        ],
    )
    def test_invalid_values(self, kwargs):
        from nn_designer.training import TrainingConfig

        with pytest.raises(ValueError):
            TrainingConfig(**kwargs)

    def test_from_dict_accepts_camel_case(self):
        from nn_designer.training import TrainingConfig

        config = TrainingConfig.from_dict(
            {"epochs": 3, "batchSize": 8, "learningRate": 0.01, "validationSplit": 0.1}
        )
        assert (config.epochs, config.batch_size) == (3, 8)
        assert config.learning_rate == 0.01
        assert config.validation_split == 0.1

    def test_from_dict_rejects_unknown_keys(self):
        from nn_designer.training import TrainingConfig

        with pytest.raises(ValueError, match="Unknown training option: momentum"):
            TrainingConfig.from_dict({"momentum": 0.9})


class TestEnsureOutputLayer:
    def test_appends_softmax_dense(self, caplog):
        from nn_designer.training import OUTPUT_LAYER_ID, TrainingManager

        with caplog.at_level(logging.WARNING, logger="nn_designer.training"):
            specs = TrainingManager().ensure_output_layer(dense_layers(), 10)

        assert len(specs) == 3
        output = specs[-1]
        assert output.id == OUTPUT_LAYER_ID
        assert output.type == "dense"
        assert output.params["units"] == 10
        assert output.params["activation"] == "softmax"
        assert "Adding output layer for 10-class classification" in caplog.text

    def test_flattens_multi_dimensional_output(self):
        from nn_designer.shapes import propagate_shapes
        from nn_designer.training import FLATTEN_LAYER_ID, TrainingManager

        layers = [
            {"type": "input", "params": {"shape": [8, 8]}},
            {"type": "conv2d", "params": {"filters": 2, "kernelSize": 3}},
        ]
        specs = TrainingManager().ensure_output_layer(layers, 4)

        assert [spec.type for spec in specs] == ["input", "conv2d", "flatten", "dense"]
        assert specs[2].id == FLATTEN_LAYER_ID
        assert propagate_shapes(specs)[-1] == (4,)

    def test_matching_head_is_kept(self, caplog):
        from nn_designer.training import TrainingManager

        layers = dense_layers() + [{"type": "output", "params": {"units": 3}}]
        with caplog.at_level(logging.WARNING, logger="nn_designer.training"):
            specs = TrainingManager().ensure_output_layer(layers, 3)

        assert [spec.type for spec in specs] == ["input", "dense", "output"]
        assert "Adding output layer" not in caplog.text

    def test_form_string_units_match_head(self, caplog):
        """Units typed into a form ("3") are coerced before comparing."""
        from nn_designer.training import TrainingManager

        layers = dense_layers() + [
            {"type": "dense", "params": {"units": "3", "activation": "softmax"}}
        ]
        with caplog.at_level(logging.WARNING, logger="nn_designer.training"):
            specs = TrainingManager().ensure_output_layer(layers, 3)

        assert [spec.type for spec in specs] == ["input", "dense", "dense"]
        assert "Adding output layer" not in caplog.text

    def test_mismatched_head_gets_new_output(self):
        """A head with the wrong class count is followed by a new one."""
        from nn_designer.training import TrainingManager

        layers = dense_layers() + [{"type": "output", "params": {"units": 10}}]
        specs = TrainingManager().ensure_output_layer(layers, 3)

        assert len(specs) == 4
        assert specs[-1].params["units"] == 3

    def test_input_is_not_modified(self):
        from nn_designer.schema import as_layer_specs
        from nn_designer.training import TrainingManager

        layers = as_layer_specs(dense_layers())
        TrainingManager().ensure_output_layer(layers, 10)

        assert len(layers) == 2

    def test_too_few_layers(self):
        from nn_designer.errors import ConfigurationError
        from nn_designer.training import TrainingManager

        with pytest.raises(ConfigurationError, match="at least an input and output layer"):
            TrainingManager().ensure_output_layer(dense_layers()[:1], 10)


class TestTrainingLoop:
    def test_requires_built_model(self):
        from nn_designer.errors import ModelStateError
        from nn_designer.training import TrainingManager

        manager = TrainingManager()
        with pytest.raises(ModelStateError):
            list(manager.train_epochs(np.zeros((4, 4)), np.zeros((4, 3))))
        with pytest.raises(ModelStateError):
            manager.predict(np.zeros((1, 4)))

    def test_one_event_per_epoch(self):
        from nn_designer.training import TrainingConfig, TrainingManager

        dataset = vector_dataset()
        manager = TrainingManager()
        data = manager.load_dataset(dataset)
        manager.build(dense_layers())

        events = list(
            manager.train_epochs(
                data.train_inputs, data.train_labels, TrainingConfig(epochs=3, batch_size=16)
            )
        )

        assert [event.epoch for event in events] == [1, 2, 3]
        for event in events:
            assert event.loss > 0
            assert 0.0 <= event.accuracy <= 1.0
            assert event.val_loss is not None
            assert event.val_accuracy is not None

    def test_no_validation_split(self):
        from nn_designer.training import TrainingConfig, TrainingManager

        manager = TrainingManager()
        data = manager.load_dataset(vector_dataset())
        manager.build(dense_layers())

        config = TrainingConfig(epochs=1, validation_split=0.0)
        (event,) = manager.train_epochs(data.train_inputs, data.train_labels, config)
        assert event.val_loss is None

    def test_loss_decreases(self):
        from nn_designer.training import TrainingConfig, TrainingManager

        manager = TrainingManager()
        data = manager.load_dataset(vector_dataset())
        manager.build(dense_layers())

        config = TrainingConfig(epochs=20, batch_size=16, learning_rate=0.01)
        history = manager.fit(data.train_inputs, data.train_labels, config)

        assert history.epochs_completed == 20
        assert history.loss[-1] < history.loss[0], (
            f"Loss should decrease: {history.loss[0]:.4f} -> {history.loss[-1]:.4f}"
        )

    def test_stop_from_callback(self):
        from nn_designer.training import TrainingConfig, TrainingManager

        manager = TrainingManager()
        data = manager.load_dataset(vector_dataset())
        manager.build(dense_layers())

        def on_epoch_end(event):
            assert manager.is_training
            if event.epoch == 2:
                manager.stop_training()

        history = manager.fit(
            data.train_inputs, data.train_labels, TrainingConfig(epochs=10), on_epoch_end
        )

        assert history.epochs_completed == 2
        assert history.stopped_early
        assert not manager.is_training

    def test_gradient_clipping_config(self):
        from nn_designer.training import TrainingConfig, TrainingManager

        manager = TrainingManager()
        data = manager.load_dataset(vector_dataset())
        manager.build(dense_layers())

        config = TrainingConfig(epochs=1, optimizer="sgd", max_grad_norm=0.5)
        history = manager.fit(data.train_inputs, data.train_labels, config)
        assert np.isfinite(history.loss[0])


class TestStartTraining:
    def test_end_to_end(self):
        from nn_designer.training import TrainingConfig, TrainingManager

        manager = TrainingManager()
        events = []
        history = manager.start_training(
            dense_layers(),
            TrainingConfig(epochs=2, batch_size=16),
            dataset=vector_dataset(),
            on_epoch_end=events.append,
        )

        assert len(events) == history.epochs_completed == 2
        assert history.test_result is not None
        assert 0.0 <= history.test_result.accuracy <= 1.0
        assert manager.model.output_shape() == (3,)

    def test_image_dataset_with_conv_layers(self):
        """A [8, 8] image design gets a flatten and output head automatically."""
        from nn_designer.datasets import ArrayDataset
        from nn_designer.training import TrainingConfig, TrainingManager

        np.random.seed(42)
        dataset = ArrayDataset(
            "tiny-images",
            np.random.rand(12, 8, 8),
            np.arange(12) % 2,
            np.random.rand(4, 8, 8),
            np.arange(4) % 2,
        )
        layers = [
            {"type": "input", "params": {"shape": [8, 8]}},
            {"type": "conv2d", "params": {"filters": 2, "kernelSize": 3}},
            {"type": "maxpool2d", "params": {"poolSize": 2}},
        ]
        manager = TrainingManager()
        history = manager.start_training(layers, TrainingConfig(epochs=1, batch_size=4), dataset)

        assert history.epochs_completed == 1
        assert manager.predict(np.random.rand(3, 8, 8)).shape == (3, 2)

    def test_requires_dataset(self):
        from nn_designer.training import TrainingManager

        with pytest.raises(ValueError, match="No dataset loaded"):
            TrainingManager().start_training(dense_layers())

    def test_too_few_layers(self):
        from nn_designer.errors import ConfigurationError
        from nn_designer.training import TrainingManager

        with pytest.raises(ConfigurationError):
            TrainingManager().start_training(dense_layers()[:1], dataset=vector_dataset())

    def test_unknown_dataset_name(self):
        from nn_designer.training import TrainingManager

        with pytest.raises(ValueError, match="Unknown dataset"):
            TrainingManager().start_training(dense_layers(), dataset="no-such-dataset")

    def test_rebuild_after_failed_build(self):
        """A design error does not block building a corrected design."""
        from nn_designer.errors import CompileError
        from nn_designer.training import TrainingManager

        manager = TrainingManager()
        with pytest.raises(CompileError):
            manager.build(dense_layers() + [{"type": "bogus"}])

        model = manager.build(dense_layers(), num_classes=3)
        assert model.output_shape() == (3,)


class TestEvaluateAndDispose:
    def test_evaluate(self):
        from nn_designer.training import TrainingManager

        manager = TrainingManager()
        data = manager.load_dataset(vector_dataset())
        manager.build(dense_layers())

        result = manager.evaluate(data.test_inputs, data.test_labels, batch_size=5)
        assert result.loss > 0
        assert 0.0 <= result.accuracy <= 1.0

    def test_evaluate_empty_split(self):
        from nn_designer.training import TrainingManager

        manager = TrainingManager()
        manager.build(dense_layers(), num_classes=3)
        with pytest.raises(ValueError, match="empty"):
            manager.evaluate(np.zeros((0, 4)), np.zeros((0, 3)))

    def test_dispose_releases_model(self):
        from nn_designer.memory import memory_info
        from nn_designer.training import TrainingManager

        before = memory_info()
        manager = TrainingManager()
        manager.load_dataset(vector_dataset())
        model = manager.build(dense_layers())
        manager.dispose()

        assert model.is_disposed
        assert manager.model is None
        assert manager.data is None
        assert memory_info() == before
