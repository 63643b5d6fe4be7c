"""
Training Driver

Trains a designed layer list on a dataset. The manager makes sure the model
ends in a classification head that matches the dataset, compiles it, runs
the epoch loop (forward, loss, backward, optimizer step), and evaluates on
the held-out test split.

Training loop (per batch):
    1. Forward pass in training mode (dropout enabled)
    2. Loss and its gradient w.r.t. the model output
    3. Backward pass through every operator
    4. Optional gradient clipping
    5. Optimizer step (parameters updated in place)

Classes:
    TrainingConfig: Hyperparameters for one training run
    EpochEnd: Metrics reported at the end of every epoch
    EvaluationResult: Loss and accuracy on a dataset split
    TrainingHistory: Per-epoch metrics of a finished run
    TrainingManager: Builds, trains, evaluates and disposes a model
"""

import logging
import time
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from tqdm.auto import tqdm

from nn_designer.compiler import CompiledModel, CompilerState, ModelCompiler
from nn_designer.datasets import (
    DataLoader,
    Dataset,
    DatasetLoadOptions,
    DatasetMetadata,
    DatasetTensors,
    get_dataset,
)
from nn_designer.errors import ConfigurationError, ModelStateError
from nn_designer.losses import LOSSES, accuracy, get_loss
from nn_designer.memory import log_memory_usage
from nn_designer.optimizer import OPTIMIZERS, clip_gradient_norm, create_optimizer
from nn_designer.schema import LayerLike, LayerSpec, as_layer_specs
from nn_designer.shapes import propagate_shapes
from nn_designer.validation import sanitize_parameter_value

logger = logging.getLogger(__name__)

OUTPUT_LAYER_ID = "output-auto"
FLATTEN_LAYER_ID = "flatten-auto"

# UI keys that differ from the dataclass field names
_CAMEL_CASE_KEYS = {
    "batchSize": "batch_size",
    "learningRate": "learning_rate",
    "validationSplit": "validation_split",
    "maxGradNorm": "max_grad_norm",
}


@dataclass
class TrainingConfig:
    """
    Hyperparameters for a training run.

    Attributes:
        epochs: Number of passes over the training data
        batch_size: Samples per optimizer step
        learning_rate: Optimizer step size
        optimizer: "adam", "sgd" or "rmsprop"
        loss: "categoricalCrossentropy", "meanSquaredError" or "binaryCrossentropy"
        validation_split: Fraction of training data held out for validation
        max_grad_norm: Clip gradients to this global norm (None disables)
        shuffle: Reshuffle the training data every epoch
        verbose: Show a progress bar per epoch
    """

    epochs: int = 10
    batch_size: int = 32
    learning_rate: float = 1e-3
    optimizer: str = "adam"
    loss: str = "categoricalCrossentropy"
    validation_split: float = 0.2
    max_grad_norm: Optional[float] = None
    shuffle: bool = True
    verbose: bool = False

    def __post_init__(self):
        if self.epochs < 1:
            raise ValueError(f"epochs must be at least 1, got {self.epochs}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.learning_rate <= 0:
            raise ValueError(f"learning_rate must be positive, got {self.learning_rate}")
        if self.optimizer not in OPTIMIZERS:
            raise ValueError(
                f"Unknown optimizer: {self.optimizer}. "
                f"Expected one of: {', '.join(OPTIMIZERS)}"
            )
        if self.loss not in LOSSES:
            raise ValueError(
                f"Unknown loss: {self.loss}. Expected one of: {', '.join(LOSSES)}"
            )
        if not 0.0 <= self.validation_split < 1.0:
            raise ValueError(
                f"validation_split must be in [0, 1), got {self.validation_split}"
            )
        if self.max_grad_norm is not None and self.max_grad_norm <= 0:
            raise ValueError(f"max_grad_norm must be positive, got {self.max_grad_norm}")

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "TrainingConfig":
        """Build a config from snake_case or camelCase keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in values.items():
            name = _CAMEL_CASE_KEYS.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown training option: {key}")
            kwargs[name] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class EpochEnd:
    """Metrics of one finished epoch (epoch numbers start at 1)."""

    epoch: int
    loss: float
    accuracy: float
    val_loss: Optional[float] = None
    val_accuracy: Optional[float] = None


@dataclass(frozen=True)
class EvaluationResult:
    loss: float
    accuracy: float


@dataclass
class TrainingHistory:
    loss: List[float] = field(default_factory=list)
    accuracy: List[float] = field(default_factory=list)
    val_loss: List[Optional[float]] = field(default_factory=list)
    val_accuracy: List[Optional[float]] = field(default_factory=list)
    stopped_early: bool = False
    test_result: Optional[EvaluationResult] = None

    def record(self, event: EpochEnd) -> None:
        self.loss.append(event.loss)
        self.accuracy.append(event.accuracy)
        self.val_loss.append(event.val_loss)
        self.val_accuracy.append(event.val_accuracy)

    @property
    def epochs_completed(self) -> int:
        return len(self.loss)


class TrainingManager:
    """
    Trains designed models.

    Usage:
        manager = TrainingManager()
        manager.load_dataset("my-dataset")
        history = manager.start_training(layers, TrainingConfig(epochs=5))
        predictions = manager.predict(samples)
        manager.dispose()

    The manager owns one ModelCompiler, so building a new model releases the
    previous one.
    """

    def __init__(self, compiler: Optional[ModelCompiler] = None):
        self.compiler = compiler or ModelCompiler()
        self.dataset_metadata: Optional[DatasetMetadata] = None
        self.data: Optional[DatasetTensors] = None
        self._stop_requested = False
        self.is_training = False

    @property
    def model(self) -> Optional[CompiledModel]:
        return self.compiler.model

    def _require_model(self) -> CompiledModel:
        if self.compiler.model is None:
            raise ModelStateError("No model has been built. Call build() first.")
        return self.compiler.model

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def load_dataset(
        self,
        dataset: Union[str, Dataset],
        options: Optional[DatasetLoadOptions] = None,
    ) -> DatasetTensors:
        """
        Load a dataset (by registered name or instance) for training.

        Raises:
            ValueError: If the name is not registered
        """
        if isinstance(dataset, str):
            dataset = get_dataset(dataset)
        self.data = dataset.load_tensors(options)
        self.dataset_metadata = dataset.metadata
        return self.data

    # ------------------------------------------------------------------
    # Model
    # ------------------------------------------------------------------

    def ensure_output_layer(
        self, layers: Sequence[LayerLike], num_classes: int
    ) -> List[LayerSpec]:
        """
        Return a copy of layers that ends in a num_classes-way classifier.

        If the last layer is already a dense/output layer with num_classes
        units the copy is returned unchanged. Otherwise a flatten layer is
        appended when the current output is not rank-1, followed by a softmax
        dense layer. The given list is never modified.

        Raises:
            ConfigurationError: Fewer than two layers
            CompileError: Any error the shape propagator reports for the
                          original list
        """
        specs = [spec.model_copy(deep=True) for spec in as_layer_specs(layers)]
        if len(specs) < 2:
            raise ConfigurationError("Model must have at least an input and output layer")

        last = specs[-1]
        if last.type in ("dense", "output"):
            units = sanitize_parameter_value(last.type, "units", last.params.get("units"))
            if units == num_classes:
                return specs

        logger.warning("Adding output layer for %d-class classification", num_classes)

        final_shape = propagate_shapes(specs)[-1]
        if len(final_shape) > 1:
            specs.append(LayerSpec(id=FLATTEN_LAYER_ID, type="flatten", name="Flatten"))

        specs.append(
            LayerSpec(
                id=OUTPUT_LAYER_ID,
                type="dense",
                name="Output",
                params={
                    "units": num_classes,
                    "activation": "softmax",
                    "useBias": True,
                    "kernelInitializer": "glorotUniform",
                },
            )
        )
        return specs

    def build(
        self, layers: Sequence[LayerLike], num_classes: Optional[int] = None
    ) -> CompiledModel:
        """
        Compile layers, adding an output layer for num_classes when given
        (or when a dataset is loaded).
        """
        if num_classes is None and self.dataset_metadata is not None:
            num_classes = self.dataset_metadata.num_classes

        if num_classes is not None:
            specs = self.ensure_output_layer(layers, num_classes)
        else:
            specs = as_layer_specs(layers)

        if self.compiler.state is CompilerState.FAILED:
            self.compiler.reset()
        model = self.compiler.compile(specs)
        logger.info(
            "Built model with %s trainable parameters\n%s",
            f"{model.parameter_count():,}",
            model.summary(),
        )
        return model

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def stop_training(self) -> None:
        """Ask the running loop to stop after the current batch."""
        self._stop_requested = True

    def _train_step(
        self,
        model: CompiledModel,
        optimizer,
        inputs: np.ndarray,
        targets: np.ndarray,
        config: TrainingConfig,
    ) -> Tuple[float, float]:
        loss_fn, loss_backward = get_loss(config.loss)

        predictions = model.forward(inputs, training=True)
        loss = loss_fn(predictions, targets)

        model.backward(loss_backward(predictions, targets))
        gradients = model.get_gradients()
        if config.max_grad_norm is not None:
            gradients = clip_gradient_norm(gradients, config.max_grad_norm)

        optimizer.step(gradients)
        return loss, accuracy(predictions, targets)

    def train_epochs(
        self,
        inputs: np.ndarray,
        labels: np.ndarray,
        config: Optional[TrainingConfig] = None,
        validation_data: Optional[Tuple[np.ndarray, np.ndarray]] = None,
    ) -> Iterator[EpochEnd]:
        """
        Train the built model, yielding an EpochEnd after every epoch.

        Without validation_data, the last config.validation_split fraction
        of the inputs is held out for validation. A stop_training() request
        ends the loop after the current batch; the partial epoch is still
        reported if it ran at least one batch.

        Raises:
            ModelStateError: If no model has been built
            ValueError: If no training samples remain after the split
        """
        config = config or TrainingConfig()
        model = self._require_model()
        inputs = np.asarray(inputs)
        labels = np.asarray(labels)

        if validation_data is None and config.validation_split > 0:
            split = int(len(inputs) * (1.0 - config.validation_split))
            if 0 < split < len(inputs):
                validation_data = (inputs[split:], labels[split:])
                inputs, labels = inputs[:split], labels[:split]
        if len(inputs) == 0:
            raise ValueError("No training samples")

        optimizer = create_optimizer(config.optimizer, config.learning_rate)
        optimizer.initialize(model.get_parameters())
        loader = DataLoader(inputs, labels, batch_size=config.batch_size, shuffle=config.shuffle)

        self._stop_requested = False
        self.is_training = True
        try:
            for epoch in range(1, config.epochs + 1):
                epoch_start = time.time()
                total_loss = 0.0
                total_correct = 0.0
                seen = 0

                progress = tqdm(
                    loader,
                    desc=f"Epoch {epoch}/{config.epochs}",
                    disable=not config.verbose,
                    leave=False,
                )
                for batch_inputs, batch_labels in progress:
                    if self._stop_requested:
                        break
                    loss, batch_accuracy = self._train_step(
                        model, optimizer, batch_inputs, batch_labels, config
                    )
                    total_loss += loss * len(batch_inputs)
                    total_correct += batch_accuracy * len(batch_inputs)
                    seen += len(batch_inputs)
                    progress.set_postfix(loss=f"{loss:.4f}")
                progress.close()

                if seen == 0:
                    break

                event = EpochEnd(epoch=epoch, loss=total_loss / seen, accuracy=total_correct / seen)
                if validation_data is not None:
                    result = self.evaluate(
                        validation_data[0],
                        validation_data[1],
                        loss=config.loss,
                        batch_size=config.batch_size,
                    )
                    event = EpochEnd(
                        epoch=epoch,
                        loss=event.loss,
                        accuracy=event.accuracy,
                        val_loss=result.loss,
                        val_accuracy=result.accuracy,
                    )

                logger.info(
                    "Epoch %d/%d (%.1fs): loss %.4f, accuracy %.4f%s",
                    epoch,
                    config.epochs,
                    time.time() - epoch_start,
                    event.loss,
                    event.accuracy,
                    ""
                    if event.val_loss is None
                    else f", val_loss {event.val_loss:.4f}, val_accuracy {event.val_accuracy:.4f}",
                )
                yield event

                if self._stop_requested:
                    break
        finally:
            self.is_training = False

        if self._stop_requested:
            logger.info("Training stopped early")

    def fit(
        self,
        inputs: np.ndarray,
        labels: np.ndarray,
        config: Optional[TrainingConfig] = None,
        on_epoch_end: Optional[Callable[[EpochEnd], None]] = None,
        validation_data: Optional[Tuple[np.ndarray, np.ndarray]] = None,
    ) -> TrainingHistory:
        """
        Run train_epochs to completion.

        Args:
            on_epoch_end: Called with every EpochEnd; may call stop_training()
        """
        history = TrainingHistory()
        for event in self.train_epochs(inputs, labels, config, validation_data):
            history.record(event)
            if on_epoch_end is not None:
                on_epoch_end(event)
        history.stopped_early = self._stop_requested
        return history

    def start_training(
        self,
        layers: Sequence[LayerLike],
        config: Optional[TrainingConfig] = None,
        dataset: Union[str, Dataset, None] = None,
        on_epoch_end: Optional[Callable[[EpochEnd], None]] = None,
    ) -> TrainingHistory:
        """
        Build layers for the loaded dataset, train, then evaluate on the test
        split.

        Raises:
            ConfigurationError: Fewer than two layers, or an invalid design
            ValueError: If no dataset is loaded or given
        """
        if len(layers) < 2:
            raise ConfigurationError("Model must have at least an input and output layer")

        if dataset is not None:
            self.load_dataset(dataset)
        if self.data is None:
            raise ValueError("No dataset loaded. Call load_dataset() first.")

        config = config or TrainingConfig()
        self.build(layers)
        history = self.fit(
            self.data.train_inputs, self.data.train_labels, config, on_epoch_end
        )

        if len(self.data.test_inputs) > 0:
            history.test_result = self.evaluate(
                self.data.test_inputs,
                self.data.test_labels,
                loss=config.loss,
                batch_size=config.batch_size,
            )
            logger.info(
                "Test loss %.4f, test accuracy %.4f",
                history.test_result.loss,
                history.test_result.accuracy,
            )
        return history

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def evaluate(
        self,
        inputs: np.ndarray,
        labels: np.ndarray,
        loss: str = "categoricalCrossentropy",
        batch_size: int = 32,
    ) -> EvaluationResult:
        """Loss and accuracy of the built model on a dataset split."""
        model = self._require_model()
        loss_fn, _ = get_loss(loss)

        total_loss = 0.0
        total_correct = 0.0
        count = 0
        for batch_inputs, batch_labels in DataLoader(
            np.asarray(inputs), np.asarray(labels), batch_size=batch_size, shuffle=False
        ):
            predictions = model.predict(batch_inputs)
            total_loss += loss_fn(predictions, batch_labels) * len(batch_inputs)
            total_correct += accuracy(predictions, batch_labels) * len(batch_inputs)
            count += len(batch_inputs)

        if count == 0:
            raise ValueError("Cannot evaluate on an empty dataset")
        return EvaluationResult(loss=total_loss / count, accuracy=total_correct / count)

    def predict(self, inputs: np.ndarray) -> np.ndarray:
        """Inference on a batch of samples."""
        return self._require_model().predict(inputs)

    def dispose(self) -> None:
        """Drop the loaded data and release the model."""
        self.data = None
        self.dataset_metadata = None
        self.compiler.dispose()
        log_memory_usage("After dispose")


if __name__ == "__main__":
    from nn_designer.datasets import ArrayDataset

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 70)
    print("TRAINING DRIVER DEMO")
    print("=" * 70)
    print()
    print("Dataset: 3 gaussian blobs in 2-D, one class per blob.")
    print()

    np.random.seed(42)
    centers = np.array([[0.0, 3.0], [3.0, -2.0], [-3.0, -2.0]])

    def make_split(size):
        labels = np.random.randint(0, 3, size=size)
        return centers[labels] + np.random.randn(size, 2), labels

    train_x, train_y = make_split(300)
    test_x, test_y = make_split(60)
    dataset = ArrayDataset("blobs", train_x, train_y, test_x, test_y)

    # The design has no classification head; one is added for 3 classes
    layers = [
        {"type": "input", "params": {"shape": [2]}},
        {"type": "dense", "params": {"units": 16, "activation": "relu"}},
    ]

    manager = TrainingManager()
    history = manager.start_training(
        layers,
        TrainingConfig(epochs=15, batch_size=16, learning_rate=0.01, verbose=True),
        dataset=dataset,
        on_epoch_end=lambda event: print(
            f"  epoch {event.epoch:2d}: loss {event.loss:.4f}, "
            f"val_accuracy {event.val_accuracy:.3f}"
        ),
    )

    print()
    print(f"Test accuracy: {history.test_result.accuracy:.3f}")
    print(f"Prediction for {centers[0]}: {manager.predict(centers[:1]).round(3)}")
    manager.dispose()
    print()
    print("=" * 70)
    print("Training demo complete!")
    print("=" * 70)
