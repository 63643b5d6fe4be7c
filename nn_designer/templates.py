"""
Layer Factory and Model Templates

create_layer() makes a new LayerSpec from the registry defaults, the way a
layer dragged from the palette starts out. The templates are ready-made
layer lists for common problems; every call to get_template() returns
layers with fresh IDs so a template can be loaded more than once.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from nn_designer.registry import get_definition
from nn_designer.schema import LayerSpec

# (type, name, params) of one template layer
LayerBlueprint = Tuple[str, str, Dict[str, Any]]


def create_layer(layer_type: str, name: Optional[str] = None, **param_overrides) -> LayerSpec:
    """
    New layer with registry defaults, overridden by param_overrides.

    Raises:
        UnknownLayerTypeError: If layer_type is not a known layer type
    """
    definition = get_definition(layer_type)
    params = {**definition.default_params, **param_overrides}
    return LayerSpec(
        type=layer_type,
        name=name if name is not None else definition.display_name,
        params=params,
    )


@dataclass(frozen=True)
class ModelTemplate:
    id: str
    name: str
    description: str
    category: str
    recommended_dataset: str
    blueprint: Tuple[LayerBlueprint, ...]

    def create_layers(self) -> List[LayerSpec]:
        return [create_layer(t, name, **params) for t, name, params in self.blueprint]


def _conv(name: str, filters: int) -> LayerBlueprint:
    return ("conv2d", name, {"filters": filters, "kernelSize": 3, "padding": "same"})


def _pool(name: str) -> LayerBlueprint:
    return ("maxpool2d", name, {"poolSize": 2, "strides": 2})


def _dense(name: str, units: int) -> LayerBlueprint:
    return ("dense", name, {"units": units, "activation": "relu"})


def _output(units: int = 10) -> LayerBlueprint:
    return ("output", "Output Layer", {"units": units, "activation": "softmax"})


MODEL_TEMPLATES: Dict[str, ModelTemplate] = {
    template.id: template
    for template in (
        ModelTemplate(
            id="simple-dense",
            name="Simple Dense Network",
            description="Basic fully-connected network for simple classification tasks",
            category="classification",
            recommended_dataset="mnist",
            blueprint=(
                ("input", "Input Layer", {"shape": [28, 28, 1]}),
                ("flatten", "Flatten", {}),
                _dense("Hidden Layer 1", 128),
                _dense("Hidden Layer 2", 64),
                _output(),
            ),
        ),
        ModelTemplate(
            id="deep-dense",
            name="Deep Dense Network",
            description="Multi-layer fully-connected network with dropout regularization",
            category="classification",
            recommended_dataset="fashion-mnist",
            blueprint=(
                ("input", "Input Layer", {"shape": [28, 28, 1]}),
                ("flatten", "Flatten", {}),
                _dense("Hidden Layer 1", 256),
                ("dropout", "Dropout 1", {"rate": 0.3}),
                _dense("Hidden Layer 2", 128),
                ("dropout", "Dropout 2", {"rate": 0.2}),
                _dense("Hidden Layer 3", 64),
                _output(),
            ),
        ),
        ModelTemplate(
            id="simple-cnn",
            name="Simple CNN",
            description="Basic convolutional network for image classification",
            category="computer-vision",
            recommended_dataset="mnist",
            blueprint=(
                ("input", "Input Layer", {"shape": [28, 28, 1]}),
                _conv("Conv Layer 1", 32),
                _pool("MaxPool 1"),
                _conv("Conv Layer 2", 64),
                _pool("MaxPool 2"),
                ("flatten", "Flatten", {}),
                _dense("Dense Layer", 128),
                _output(),
            ),
        ),
        ModelTemplate(
            id="advanced-cnn",
            name="Advanced CNN",
            description="Deep convolutional network with multiple conv blocks and regularization",
            category="computer-vision",
            recommended_dataset="cifar10",
            blueprint=(
                ("input", "Input Layer", {"shape": [32, 32, 3]}),
                _conv("Conv Block 1A", 32),
                _conv("Conv Block 1B", 32),
                _pool("MaxPool 1"),
                ("dropout", "Dropout 1", {"rate": 0.25}),
                _conv("Conv Block 2A", 64),
                _conv("Conv Block 2B", 64),
                _pool("MaxPool 2"),
                ("dropout", "Dropout 2", {"rate": 0.25}),
                ("flatten", "Flatten", {}),
                _dense("Dense Layer 1", 512),
                ("dropout", "Dropout 3", {"rate": 0.5}),
                _dense("Dense Layer 2", 256),
                _output(),
            ),
        ),
        ModelTemplate(
            id="transformer-text-classifier",
            name="Transformer Text Classifier",
            description="Embedding, positional encoding and a transformer block over token IDs",
            category="nlp",
            recommended_dataset="ag-news",
            blueprint=(
                ("input", "Input Layer", {"shape": [100]}),
                ("embedding", "Embedding", {"vocabSize": 10000, "embeddingDim": 64, "maxLength": 100}),
                ("positionalEncoding", "Positional Encoding", {"maxLength": 100}),
                (
                    "transformerBlock",
                    "Transformer Block",
                    {"numHeads": 4, "keyDim": 16, "ffDim": 128, "dropout": 0.1},
                ),
                ("globalAvgPool1d", "Global Average Pooling", {}),
                ("dropout", "Dropout", {"rate": 0.1}),
                _output(4),
            ),
        ),
    )
}


def get_template(template_id: str) -> List[LayerSpec]:
    """
    Layers of a template, with fresh IDs.

    Raises:
        ValueError: If no template has this ID
    """
    if template_id not in MODEL_TEMPLATES:
        raise ValueError(f"Unknown template: {template_id}")
    return MODEL_TEMPLATES[template_id].create_layers()


def get_templates_by_category(category: str) -> List[ModelTemplate]:
    return [t for t in MODEL_TEMPLATES.values() if t.category == category]
