"""
Optimizers for Training Designed Models

The three optimizers a TrainingConfig can select (adam, sgd, rmsprop), plus
gradient clipping. Optimizers update parameter arrays in place, so they work
directly on the dictionary returned by CompiledModel.get_parameters().

Reference:
    - "Adam: A Method for Stochastic Optimization" (Kingma & Ba, 2014)
    - "Decoupled Weight Decay Regularization" (Loshchilov & Hutter, 2019)
    - Hinton, "Neural Networks for Machine Learning", Lecture 6e (RMSProp)

Classes:
    Optimizer: Base class holding the parameter references
    AdamW: Adam with decoupled weight decay (weight_decay=0 gives plain Adam)
    SGD: Stochastic gradient descent with optional momentum
    RMSProp: Root-mean-square propagation

Functions:
    clip_gradient_norm: Clip gradients to a maximum global norm
    create_optimizer: Build an optimizer from its config name
"""

import logging
from typing import Dict, Optional

import numpy as np

logger = logging.getLogger(__name__)


class Optimizer:
    """
    Base optimizer.

    Call initialize() with the parameter dictionary once, then step() with a
    matching gradient dictionary after every backward pass.
    """

    def __init__(self, learning_rate: float):
        if learning_rate <= 0:
            raise ValueError(f"Learning rate must be positive, got {learning_rate}")
        self.learning_rate = learning_rate
        self.step_count: int = 0
        self._params: Optional[Dict[str, np.ndarray]] = None

    def initialize(self, parameters: Dict[str, np.ndarray]) -> None:
        self._params = parameters
        self.step_count = 0
        self._init_state(parameters)

    def _init_state(self, parameters: Dict[str, np.ndarray]) -> None:
        pass

    def step(
        self, gradients: Dict[str, np.ndarray], learning_rate: Optional[float] = None
    ) -> None:
        """
        Update every parameter that has a gradient, in place.

        Args:
            gradients: Parameter name -> gradient array
            learning_rate: Optional override (for schedules)
        """
        if self._params is None:
            raise RuntimeError("Optimizer not initialized. Call initialize() first.")

        self.step_count += 1
        lr = learning_rate if learning_rate is not None else self.learning_rate

        for name, gradient in gradients.items():
            if gradient is None or name not in self._params:
                continue
            self._update(name, self._params[name], gradient, lr)

    def _update(
        self, name: str, param: np.ndarray, gradient: np.ndarray, lr: float
    ) -> None:
        raise NotImplementedError


class AdamW(Optimizer):
    """
    Adam with decoupled weight decay.

    Algorithm (at each step t):
        m_t = beta1 * m_{t-1} + (1 - beta1) * g_t
        v_t = beta2 * v_{t-1} + (1 - beta2) * g_t^2
        m_hat = m_t / (1 - beta1^t)
        v_hat = v_t / (1 - beta2^t)
        theta_t = theta_{t-1} - lr * (m_hat / (sqrt(v_hat) + eps) + wd * theta_{t-1})

    With weight_decay=0 this is exactly Adam, which is what the "adam"
    config name creates.
    """

    def __init__(
        self,
        learning_rate: float = 1e-3,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-7,
        weight_decay: float = 0.0,
    ):
        super().__init__(learning_rate)
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon
        self.weight_decay = weight_decay

        self.momentum: Dict[str, np.ndarray] = {}
        self.velocity: Dict[str, np.ndarray] = {}

    def _init_state(self, parameters):
        self.momentum = {name: np.zeros_like(p) for name, p in parameters.items()}
        self.velocity = {name: np.zeros_like(p) for name, p in parameters.items()}

    def _update(self, name, param, gradient, lr):
        self.momentum[name] = self.beta1 * self.momentum[name] + (1.0 - self.beta1) * gradient
        self.velocity[name] = self.beta2 * self.velocity[name] + (
            1.0 - self.beta2
        ) * np.square(gradient)

        momentum_corrected = self.momentum[name] / (1.0 - self.beta1**self.step_count)
        velocity_corrected = self.velocity[name] / (1.0 - self.beta2**self.step_count)
        update = momentum_corrected / (np.sqrt(velocity_corrected) + self.epsilon)

        param -= lr * (update + self.weight_decay * param)


class SGD(Optimizer):
    """
    Stochastic gradient descent.

        v_t = momentum * v_{t-1} - lr * g_t
        theta_t = theta_{t-1} + v_t
    """

    def __init__(self, learning_rate: float = 1e-2, momentum: float = 0.0):
        super().__init__(learning_rate)
        self.momentum = momentum
        self.velocity: Dict[str, np.ndarray] = {}

    def _init_state(self, parameters):
        self.velocity = {name: np.zeros_like(p) for name, p in parameters.items()}

    def _update(self, name, param, gradient, lr):
        if self.momentum == 0.0:
            param -= lr * gradient
            return
        self.velocity[name] = self.momentum * self.velocity[name] - lr * gradient
        param += self.velocity[name]


class RMSProp(Optimizer):
    """
    RMSProp.

        s_t = rho * s_{t-1} + (1 - rho) * g_t^2
        theta_t = theta_{t-1} - lr * g_t / (sqrt(s_t) + eps)
    """

    def __init__(
        self, learning_rate: float = 1e-3, rho: float = 0.9, epsilon: float = 1e-7
    ):
        super().__init__(learning_rate)
        self.rho = rho
        self.epsilon = epsilon
        self.mean_square: Dict[str, np.ndarray] = {}

    def _init_state(self, parameters):
        self.mean_square = {name: np.zeros_like(p) for name, p in parameters.items()}

    def _update(self, name, param, gradient, lr):
        self.mean_square[name] = self.rho * self.mean_square[name] + (
            1.0 - self.rho
        ) * np.square(gradient)
        param -= lr * gradient / (np.sqrt(self.mean_square[name]) + self.epsilon)


def clip_gradient_norm(
    gradients: Dict[str, np.ndarray], max_norm: float
) -> Dict[str, np.ndarray]:
    """
    Scale all gradients down together when their global L2 norm exceeds
    max_norm. Returns a new dictionary; the input is not modified.
    """
    present = {name: g for name, g in gradients.items() if g is not None}
    total_norm = np.sqrt(sum(np.sum(np.square(g)) for g in present.values()))
    clip_coefficient = max_norm / total_norm if total_norm > max_norm else 1.0
    return {name: g * clip_coefficient for name, g in present.items()}


OPTIMIZERS = {
    "adam": AdamW,
    "sgd": SGD,
    "rmsprop": RMSProp,
}


def create_optimizer(name: str, learning_rate: float) -> Optimizer:
    """
    Create an optimizer from its TrainingConfig name.

    Raises:
        ValueError: If the name is not adam, sgd or rmsprop
    """
    if name not in OPTIMIZERS:
        raise ValueError(
            f"Unknown optimizer: {name}. Expected one of: {', '.join(OPTIMIZERS)}"
        )
    logger.debug("Creating %s optimizer (learning rate %g)", name, learning_rate)
    return OPTIMIZERS[name](learning_rate=learning_rate)
