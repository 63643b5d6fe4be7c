"""
Neural Network Designer

Compiles a user-designed, ordered list of layers into an executable and
trainable model built on NumPy. Layer lists are validated parameter by
parameter and shape-checked layer by layer before any weight is allocated,
so configuration mistakes are reported with the index of the offending layer.

Modules:
    schema: LayerSpec, the record describing one designed layer
    registry: The closed set of layer types, their defaults and schemas
    rules: Parameter validation rules and value coercion
    validation: Per-layer parameter validation and parameter help text
    shapes: Shape propagation through a layer list
    activations: Activation functions and their derivatives
    initializers: Weight initialization schemes
    layers: Dense, Conv2D, MaxPool2D, LayerNorm, Embedding, positional encoding
    attention: Scaled dot-product and multi-head attention
    transformer: Feed-forward network and post-norm transformer encoder block
    compiler: Layer list -> CompiledModel, and the ModelCompiler lifecycle
    memory: Bookkeeping of arrays owned by live models
    losses: Loss functions and accuracy
    optimizer: Adam, SGD and RMSProp
    datasets: Dataset contract, registry and batching
    training: TrainingManager (auto output layer, epoch loop, evaluation)
    templates: Layer factory and ready-made model templates
    errors: Exception hierarchy

Reference:
    "Attention Is All You Need" (Vaswani et al., 2017)
    https://arxiv.org/abs/1706.03762
"""

__version__ = "1.0.0"
__author__ = "Neural Network Designer Project"
