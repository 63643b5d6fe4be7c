"""
Dataset Contract and Utilities

Every dataset a model can be trained on implements the Dataset base class:
it describes itself with DatasetMetadata and produces DatasetTensors (train
and test inputs with one-hot labels). Datasets are looked up by name through
a small registry so a training driver can be pointed at one by string.

Classes:
    DatasetMetadata: Name, input shape, class count and sizes of a dataset
    DatasetTensors: Train/test inputs and one-hot labels as numpy arrays
    DatasetLoadOptions: Shuffling and subsampling options
    Dataset: Abstract base class for dataset loaders
    ArrayDataset: Dataset backed by in-memory arrays
    DataLoader: Batch iterator over (inputs, labels)

Functions:
    one_hot_encode: Integer class labels -> one-hot matrix
    shuffle_arrays: Shuffle several arrays with the same permutation
    register_dataset / get_dataset / list_datasets: Dataset registry
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatasetMetadata:
    """
    Attributes:
        name: Display name
        description: One-line description
        input_shape: Shape of one sample without channels, e.g. (28, 28)
        channels: 1 for grayscale, 3 for RGB, 0 for token sequences
        num_classes: Number of output classes
        train_size: Number of training samples
        test_size: Number of test samples
        class_names: Human-readable class names
    """

    name: str
    description: str
    input_shape: Tuple[int, ...]
    channels: int
    num_classes: int
    train_size: int
    test_size: int
    class_names: Tuple[str, ...] = ()

    @property
    def sample_shape(self) -> Tuple[int, ...]:
        """Shape of one sample as fed to a model."""
        if self.channels > 0:
            return tuple(self.input_shape) + (self.channels,)
        return tuple(self.input_shape)


@dataclass
class DatasetTensors:
    train_inputs: np.ndarray
    train_labels: np.ndarray
    test_inputs: np.ndarray
    test_labels: np.ndarray


@dataclass(frozen=True)
class DatasetLoadOptions:
    shuffle: bool = True
    seed: Optional[int] = None
    train_sample_ratio: float = 1.0
    test_sample_ratio: float = 1.0


def one_hot_encode(labels: np.ndarray, num_classes: int) -> np.ndarray:
    """
    Convert integer labels to a one-hot matrix.

    Raises:
        ValueError: If a label is outside [0, num_classes)
    """
    labels = np.asarray(labels).astype(np.int64).reshape(-1)
    if labels.size and (labels.min() < 0 or labels.max() >= num_classes):
        raise ValueError(f"Labels must be in [0, {num_classes})")
    encoded = np.zeros((labels.size, num_classes), dtype=np.float64)
    encoded[np.arange(labels.size), labels] = 1.0
    return encoded


def shuffle_arrays(*arrays: np.ndarray, seed: Optional[int] = None) -> List[np.ndarray]:
    """Shuffle arrays along axis 0 with one shared permutation."""
    if not arrays:
        return []
    length = len(arrays[0])
    if any(len(a) != length for a in arrays):
        raise ValueError("All arrays must have the same length to be shuffled together")
    permutation = np.random.default_rng(seed).permutation(length)
    return [a[permutation] for a in arrays]


def _subsample(
    inputs: np.ndarray, labels: np.ndarray, ratio: float
) -> Tuple[np.ndarray, np.ndarray]:
    if not 0.0 < ratio <= 1.0:
        raise ValueError(f"Sample ratio must be in (0, 1], got {ratio}")
    count = max(1, int(round(len(inputs) * ratio))) if len(inputs) else 0
    return inputs[:count], labels[:count]


class Dataset(ABC):
    """
    Base class for dataset loaders.

    Subclasses implement load_arrays(); load_tensors() applies the load
    options, reshapes inputs to metadata.sample_shape and one-hot encodes
    integer labels.
    """

    def __init__(self, metadata: DatasetMetadata):
        self.metadata = metadata

    @abstractmethod
    def load_arrays(self) -> DatasetTensors:
        """Return the raw arrays; labels may be integer or one-hot."""

    def _prepare(self, inputs: np.ndarray, labels: np.ndarray):
        inputs = np.asarray(inputs)
        inputs = inputs.reshape((len(inputs),) + self.metadata.sample_shape)
        labels = np.asarray(labels)
        if labels.ndim == 1:
            labels = one_hot_encode(labels, self.metadata.num_classes)
        return inputs, labels

    def load_tensors(self, options: Optional[DatasetLoadOptions] = None) -> DatasetTensors:
        options = options or DatasetLoadOptions()
        raw = self.load_arrays()

        train_inputs, train_labels = self._prepare(raw.train_inputs, raw.train_labels)
        test_inputs, test_labels = self._prepare(raw.test_inputs, raw.test_labels)

        if options.shuffle:
            train_inputs, train_labels = shuffle_arrays(
                train_inputs, train_labels, seed=options.seed
            )
        train_inputs, train_labels = _subsample(
            train_inputs, train_labels, options.train_sample_ratio
        )
        test_inputs, test_labels = _subsample(
            test_inputs, test_labels, options.test_sample_ratio
        )

        logger.info(
            "Loaded %s: %d train / %d test samples",
            self.metadata.name,
            len(train_inputs),
            len(test_inputs),
        )
        return DatasetTensors(train_inputs, train_labels, test_inputs, test_labels)


class ArrayDataset(Dataset):
    """A dataset held entirely in memory."""

    def __init__(
        self,
        name: str,
        train_inputs: np.ndarray,
        train_labels: np.ndarray,
        test_inputs: np.ndarray,
        test_labels: np.ndarray,
        num_classes: Optional[int] = None,
        channels: int = 0,
        description: str = "",
        class_names: Tuple[str, ...] = (),
    ):
        train_labels = np.asarray(train_labels)
        test_labels = np.asarray(test_labels)
        if num_classes is None:
            if train_labels.ndim > 1:
                num_classes = train_labels.shape[-1]
            else:
                num_classes = int(max(train_labels.max(), test_labels.max())) + 1

        train_inputs = np.asarray(train_inputs)
        input_shape = train_inputs.shape[1:]
        if channels > 0:
            input_shape = input_shape[:-1]
        metadata = DatasetMetadata(
            name=name,
            description=description,
            input_shape=tuple(input_shape),
            channels=channels,
            num_classes=num_classes,
            train_size=len(train_inputs),
            test_size=len(test_inputs),
            class_names=tuple(class_names),
        )
        super().__init__(metadata)
        self._arrays = DatasetTensors(
            train_inputs, train_labels, np.asarray(test_inputs), test_labels
        )

    def load_arrays(self) -> DatasetTensors:
        return self._arrays


DatasetFactory = Callable[[], Dataset]
_DATASETS: Dict[str, DatasetFactory] = {}


def register_dataset(name: str, factory: DatasetFactory) -> None:
    _DATASETS[name] = factory


def get_dataset(name: str) -> Dataset:
    """
    Raises:
        ValueError: If no dataset is registered under name
    """
    if name not in _DATASETS:
        raise ValueError(f"Unknown dataset: {name}")
    return _DATASETS[name]()


def list_datasets() -> List[str]:
    return sorted(_DATASETS)


class DataLoader:
    """
    Iterates over (inputs, labels) in batches, optionally reshuffling every
    epoch.

    Usage:
        loader = DataLoader(inputs, labels, batch_size=32, shuffle=True)
        for epoch in range(num_epochs):
            for batch_inputs, batch_labels in loader:
                ...
    """

    def __init__(
        self,
        inputs: np.ndarray,
        labels: np.ndarray,
        batch_size: int = 32,
        shuffle: bool = True,
        drop_last: bool = False,
    ):
        if len(inputs) != len(labels):
            raise ValueError(
                f"inputs and labels differ in length: {len(inputs)} vs {len(labels)}"
            )
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.inputs = inputs
        self.labels = labels
        self.batch_size = batch_size
        self.shuffle = shuffle
        self.drop_last = drop_last

    def __iter__(self) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        indices = np.arange(len(self.inputs))
        if self.shuffle:
            np.random.shuffle(indices)

        for start in range(0, len(indices), self.batch_size):
            batch_indices = indices[start : start + self.batch_size]
            if self.drop_last and len(batch_indices) < self.batch_size:
                continue
            yield self.inputs[batch_indices], self.labels[batch_indices]

    def __len__(self) -> int:
        if self.drop_last:
            return len(self.inputs) // self.batch_size
        return (len(self.inputs) + self.batch_size - 1) // self.batch_size
