"""
Tests for the dataset contract, registry and batch loader.
"""

import numpy as np
import pytest


def image_dataset(train_size=20, test_size=6):
    from nn_designer.datasets import ArrayDataset

    np.random.seed(42)
    return ArrayDataset(
        "tiny-images",
        train_inputs=np.random.rand(train_size, 8, 8),
        train_labels=np.arange(train_size) % 3,
        test_inputs=np.random.rand(test_size, 8, 8),
        test_labels=np.arange(test_size) % 3,
    )


class TestOneHot:
    def test_encoding(self):
        from nn_designer.datasets import one_hot_encode

        encoded = one_hot_encode(np.array([0, 2, 1]), 3)
        assert np.array_equal(encoded, [[1, 0, 0], [0, 0, 1], [0, 1, 0]])

    def test_out_of_range_label(self):
        from nn_designer.datasets import one_hot_encode

        with pytest.raises(ValueError, match="Labels must be in"):
            one_hot_encode(np.array([0, 3]), 3)


class TestShuffle:
    def test_shared_permutation(self):
        """Inputs and labels stay paired after shuffling."""
        from nn_designer.datasets import shuffle_arrays

        inputs = np.arange(10) * 10
        labels = np.arange(10)
        shuffled_inputs, shuffled_labels = shuffle_arrays(inputs, labels, seed=0)

        assert np.array_equal(shuffled_inputs, shuffled_labels * 10)
        assert sorted(shuffled_labels) == list(range(10))

    def test_seed_is_reproducible(self):
        from nn_designer.datasets import shuffle_arrays

        first = shuffle_arrays(np.arange(50), seed=7)[0]
        second = shuffle_arrays(np.arange(50), seed=7)[0]
        assert np.array_equal(first, second)

    def test_length_mismatch(self):
        from nn_designer.datasets import shuffle_arrays

        with pytest.raises(ValueError):
            shuffle_arrays(np.arange(3), np.arange(4))


class TestArrayDataset:
    def test_metadata_is_inferred(self):
        metadata = image_dataset().metadata

        assert metadata.name == "tiny-images"
        assert metadata.input_shape == (8, 8)
        assert metadata.num_classes == 3
        assert metadata.train_size == 20
        assert metadata.test_size == 6
        assert metadata.sample_shape == (8, 8)

    def test_channels_extend_sample_shape(self):
        from nn_designer.datasets import ArrayDataset

        dataset = ArrayDataset(
            "rgb",
            np.zeros((4, 5, 5, 3)),
            np.array([0, 1, 0, 1]),
            np.zeros((2, 5, 5, 3)),
            np.array([1, 0]),
            channels=3,
        )
        assert dataset.metadata.input_shape == (5, 5)
        assert dataset.metadata.sample_shape == (5, 5, 3)

    def test_load_tensors_one_hot_encodes(self):
        from nn_designer.datasets import DatasetLoadOptions

        data = image_dataset().load_tensors(DatasetLoadOptions(shuffle=False))

        assert data.train_inputs.shape == (20, 8, 8)
        assert data.train_labels.shape == (20, 3)
        assert np.array_equal(data.train_labels.argmax(axis=1), np.arange(20) % 3)
        assert data.test_labels.shape == (6, 3)

    def test_subsampling(self):
        from nn_designer.datasets import DatasetLoadOptions

        options = DatasetLoadOptions(seed=1, train_sample_ratio=0.5, test_sample_ratio=0.5)
        data = image_dataset().load_tensors(options)

        assert len(data.train_inputs) == 10
        assert len(data.test_inputs) == 3

    def test_invalid_sample_ratio(self):
        from nn_designer.datasets import DatasetLoadOptions

        with pytest.raises(ValueError, match="Sample ratio"):
            image_dataset().load_tensors(DatasetLoadOptions(train_sample_ratio=0.0))


class TestDatasetRegistry:
    def test_register_and_get(self):
        from nn_designer.datasets import get_dataset, list_datasets, register_dataset

        register_dataset("tiny-images", image_dataset)

        assert "tiny-images" in list_datasets()
        assert get_dataset("tiny-images").metadata.num_classes == 3

    def test_unknown_dataset(self):
        from nn_designer.datasets import get_dataset

        with pytest.raises(ValueError, match="Unknown dataset: imagenet"):
            get_dataset("imagenet")


class TestDataLoader:
    def test_batches_cover_every_sample(self):
        from nn_designer.datasets import DataLoader

        inputs = np.arange(10).reshape(10, 1)
        loader = DataLoader(inputs, np.arange(10), batch_size=4)

        batches = list(loader)
        assert len(loader) == len(batches) == 3
        assert [len(b[0]) for b in batches] == [4, 4, 2]
        seen = np.concatenate([labels for _, labels in batches])
        assert sorted(seen) == list(range(10))
        for batch_inputs, batch_labels in batches:
            assert np.array_equal(batch_inputs[:, 0], batch_labels)

    def test_drop_last(self):
        from nn_designer.datasets import DataLoader

        loader = DataLoader(np.zeros((10, 2)), np.zeros(10), batch_size=4, drop_last=True)

        assert len(loader) == 2
        assert all(len(inputs) == 4 for inputs, _ in loader)

    def test_no_shuffle_keeps_order(self):
        from nn_designer.datasets import DataLoader

        loader = DataLoader(np.arange(5), np.arange(5), batch_size=2, shuffle=False)
        assert [list(labels) for _, labels in loader] == [[0, 1], [2, 3], [4]]

    def test_invalid_arguments(self):
        from nn_designer.datasets import DataLoader

        with pytest.raises(ValueError):
            DataLoader(np.zeros(3), np.zeros(4))
        with pytest.raises(ValueError):
            DataLoader(np.zeros(3), np.zeros(3), batch_size=0)
