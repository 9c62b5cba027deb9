"""
Deep Convolutional GAN (DCGAN) networks built from explicit graph operations.

The generator and discriminator own their variables directly and wire them
together with the helpers from ``dcgan.ops`` instead of prebuilt layers.
Every trainable variable is paired with zero-initialized Adam moment
accumulators that an external optimizer step can consume.
"""

import logging
from typing import Callable, Dict, Optional, Sequence, Tuple

import torch
import torch.nn as nn

from dcgan import ops
from dcgan.utils import get_device, count_parameters

logger = logging.getLogger(__name__)

NOISE_DIM = 100
IMAGE_SIZE = 28
NUM_CHANNELS = 1
UNITS = 7 * 7 * 256

KERNEL_SIZE = 5
LEAKY_ALPHA = 0.3
DROPOUT_RATE = 0.3
BN_EPSILON = 0.001


class GraphModule(nn.Module):
    """
    Base class for networks that declare their variables by hand.

    Each variable is registered together with an initializer and a pair of
    moment accumulator buffers named ``<slot>m`` and ``<slot>v``.
    """

    def __init__(self):
        super().__init__()
        self._initializers: Dict[str, Callable[[Tuple[int, ...]], torch.Tensor]] = {}
        self._slots: Dict[str, str] = {}

    def add_variable(self,
                     name: str,
                     shape: Sequence[int],
                     initializer: Callable[[Tuple[int, ...]], torch.Tensor],
                     slot: str) -> nn.Parameter:
        """
        Declare a trainable variable and its moment accumulators.

        Args:
            name: Attribute name of the variable
            shape: Variable shape
            initializer: Function returning the initial value for a shape
            slot: Prefix of the accumulator buffers

        Returns:
            The registered parameter
        """
        param = nn.Parameter(torch.empty(*shape))
        self.register_parameter(name, param)
        self.register_buffer(f"{slot}m", torch.zeros(*shape))
        self.register_buffer(f"{slot}v", torch.zeros(*shape))
        self._initializers[name] = initializer
        self._slots[name] = slot
        return param

    @torch.no_grad()
    def reset_parameters(self):
        """Run every variable initializer and zero the accumulators."""
        for name, initializer in self._initializers.items():
            param = getattr(self, name)
            param.copy_(initializer(tuple(param.shape)).to(param.device, param.dtype))
            slot = self._slots[name]
            getattr(self, f"{slot}m").zero_()
            getattr(self, f"{slot}v").zero_()
        logger.debug("Initialized %d variables of %s", len(self._initializers), type(self).__name__)

    def moments(self) -> Dict[str, Tuple[torch.Tensor, torch.Tensor]]:
        """Map each variable name to its (first, second) moment accumulators."""
        return {name: (getattr(self, f"{slot}m"), getattr(self, f"{slot}v"))
                for name, slot in self._slots.items()}


def _glorot(shape):
    return ops.glorot_uniform(shape)


def _zeros(shape):
    return torch.zeros(shape)


class Generator(GraphModule):
    """
    DCGAN Generator.

    noise -> dense -> batchnorm -> leaky ReLU -> reshape -> three transposed
    convolutions (5x5, strides 1, 2, 2), the first two followed by batch
    normalization and leaky ReLU.
    """

    def __init__(self,
                 noise_dim: int = NOISE_DIM,
                 image_size: int = IMAGE_SIZE,
                 num_channels: int = NUM_CHANNELS,
                 alpha: float = LEAKY_ALPHA,
                 epsilon: float = BN_EPSILON,
                 init_stddev: float = 0.01):
        """
        Initialize the generator.

        Args:
            noise_dim: Dimension of the noise input
            image_size: Size of output images (square, divisible by 4)
            num_channels: Number of output channels
            alpha: Leaky ReLU slope
            epsilon: Batch normalization epsilon
            init_stddev: Standard deviation of the dense weight initializer
        """
        super().__init__()
        if image_size % 4 != 0:
            raise ValueError(f"Image size must be divisible by 4, got {image_size}")

        self.noise_dim = noise_dim
        self.image_size = image_size
        self.num_channels = num_channels
        self.alpha = alpha
        self.epsilon = epsilon
        self.init_stddev = init_stddev

        self.initial_size = image_size // 4
        self.units = self.initial_size ** 2 * 256

        # dense 1
        self.add_variable("w1", (noise_dim, self.units),
                          lambda shape: torch.randn(shape) * self.init_stddev, slot="w1_w")

        # filters, (in_channels, out_channels, kh, kw)
        k = KERNEL_SIZE
        self.add_variable("filter1", (256, 128, k, k), _glorot, slot="filter1_w")
        self.add_variable("filter2", (128, 64, k, k), _glorot, slot="filter2_w")
        self.add_variable("filter3", (64, num_channels, k, k), _glorot, slot="filter3_w")

        # Running statistics for inference
        self.register_buffer("bn1_running_mean", torch.zeros(128))
        self.register_buffer("bn1_running_var", torch.ones(128))
        self.register_buffer("bn2_running_mean", torch.zeros(64))
        self.register_buffer("bn2_running_var", torch.ones(64))

        self.reset_parameters()

    def forward(self, z: torch.Tensor) -> torch.Tensor:
        """
        Forward pass of the generator.

        Args:
            z: Noise tensor of shape (batch_size, noise_dim)

        Returns:
            Generated images of shape (batch_size, num_channels, image_size, image_size)
        """
        if z.dim() != 2 or z.size(1) != self.noise_dim:
            raise ValueError(f"Expected noise of shape (N, {self.noise_dim}), got {tuple(z.shape)}")
        n = z.size(0)
        s = self.initial_size

        dense = torch.matmul(z, self.w1)
        # Fixed statistics: mean 0, variance 1, offset 0, scale 1
        batchnorm = ops.batch_normalization(dense, 0.0, 1.0, 0.0, 1.0, self.epsilon)
        x = ops.leaky_relu(batchnorm, self.alpha)
        x = x.reshape(n, 256, s, s)

        x = ops.conv2d_transpose(x, self.filter1, (n, 128, s, s), strides=1)
        x = ops.fused_batch_norm(x, x.new_ones(128), x.new_zeros(128),
                                 self.bn1_running_mean, self.bn1_running_var,
                                 epsilon=self.epsilon, training=self.training)
        x = ops.leaky_relu(x, self.alpha)

        x = ops.conv2d_transpose(x, self.filter2, (n, 64, 2 * s, 2 * s), strides=2)
        x = ops.fused_batch_norm(x, x.new_ones(64), x.new_zeros(64),
                                 self.bn2_running_mean, self.bn2_running_var,
                                 epsilon=self.epsilon, training=self.training)
        x = ops.leaky_relu(x, self.alpha)

        return ops.conv2d_transpose(x, self.filter3,
                                    (n, self.num_channels, self.image_size, self.image_size),
                                    strides=2)

    def generate(self, batch_size: int, generator: Optional[torch.Generator] = None) -> torch.Tensor:
        """Draw normal noise on the generator's device and run the forward pass."""
        noise = torch.randn(batch_size, self.noise_dim, generator=generator,
                            device=self.w1.device, dtype=self.w1.dtype)
        return self(noise)


class Discriminator(GraphModule):
    """
    DCGAN Discriminator.

    Two strided 5x5 convolutions, each with bias, leaky ReLU and dropout,
    followed by a dense layer producing one logit per image. Applying the
    same instance to real and generated batches shares the weights.
    """

    def __init__(self,
                 image_size: int = IMAGE_SIZE,
                 num_channels: int = NUM_CHANNELS,
                 alpha: float = LEAKY_ALPHA,
                 dropout_rate: float = DROPOUT_RATE):
        """
        Initialize the discriminator.

        Args:
            image_size: Size of input images (square, divisible by 4)
            num_channels: Number of input channels
            alpha: Leaky ReLU slope
            dropout_rate: Dropout rate after each convolution
        """
        super().__init__()
        if image_size % 4 != 0:
            raise ValueError(f"Image size must be divisible by 4, got {image_size}")
        if not 0.0 <= dropout_rate < 1.0:
            raise ValueError(f"Dropout rate must be in [0, 1), got {dropout_rate}")

        self.image_size = image_size
        self.num_channels = num_channels
        self.alpha = alpha
        self.dropout_rate = dropout_rate
        self.flat_features = (image_size // 4) ** 2 * 128

        k = KERNEL_SIZE
        self.add_variable("conv1_weights", (64, num_channels, k, k), _glorot, slot="conv1_w")
        self.add_variable("conv1_biases", (64,), _zeros, slot="conv1_b")
        self.add_variable("conv2_weights", (128, 64, k, k), _glorot, slot="conv2_w")
        self.add_variable("conv2_biases", (128,), _zeros, slot="conv2_b")
        self.add_variable("fc1_weights", (self.flat_features, 1), _glorot, slot="fc1_w")
        self.add_variable("fc1_biases", (1,), _zeros, slot="fc1_b")

        self.reset_parameters()

    def get_features(self, x: torch.Tensor) -> torch.Tensor:
        """
        Run the convolutional stages and flatten.

        Args:
            x: Images of shape (batch_size, num_channels, image_size, image_size)

        Returns:
            Feature tensor of shape (batch_size, flat_features)
        """
        expected = (self.num_channels, self.image_size, self.image_size)
        if x.dim() != 4 or tuple(x.shape[1:]) != expected:
            raise ValueError(f"Expected images of shape (N, {expected[0]}, {expected[1]}, {expected[2]}), "
                             f"got {tuple(x.shape)}")

        x = ops.conv2d(x, self.conv1_weights, strides=(1, 2, 2, 1), padding="SAME")
        x = ops.leaky_relu(ops.bias_add(x, self.conv1_biases), self.alpha)
        x = ops.dropout(x, self.dropout_rate, training=self.training)

        x = ops.conv2d(x, self.conv2_weights, strides=(1, 2, 2, 1), padding="SAME")
        x = ops.leaky_relu(ops.bias_add(x, self.conv2_biases), self.alpha)
        x = ops.dropout(x, self.dropout_rate, training=self.training)

        return x.reshape(x.size(0), self.flat_features)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Forward pass of the discriminator.

        Args:
            x: Images of shape (batch_size, num_channels, image_size, image_size)

        Returns:
            Logits of shape (batch_size, 1)
        """
        features = self.get_features(x)
        return ops.bias_add(torch.matmul(features, self.fc1_weights), self.fc1_biases)


class DCGAN(nn.Module):
    """
    Bundles the generator and discriminator.

    Both networks live on the same device; sampling runs without gradients.
    """

    def __init__(self,
                 noise_dim: int = NOISE_DIM,
                 image_size: int = IMAGE_SIZE,
                 num_channels: int = NUM_CHANNELS,
                 alpha: float = LEAKY_ALPHA,
                 dropout_rate: float = DROPOUT_RATE,
                 epsilon: float = BN_EPSILON,
                 init_stddev: float = 0.01,
                 device: Optional[torch.device] = None):
        super().__init__()

        self.noise_dim = noise_dim
        self.image_size = image_size
        self.num_channels = num_channels

        self.generator = Generator(noise_dim, image_size, num_channels, alpha, epsilon, init_stddev)
        self.discriminator = Discriminator(image_size, num_channels, alpha, dropout_rate)

        self.device = torch.device(device) if device is not None else get_device()
        self.to(self.device)

    def sample(self, num_samples: int = 1, z: Optional[torch.Tensor] = None) -> torch.Tensor:
        """
        Sample images from the generator.

        Args:
            num_samples: Number of samples to generate
            z: Optional noise vectors (if None, sample from a standard normal)

        Returns:
            Generated image tensor
        """
        if z is None:
            z = torch.randn(num_samples, self.noise_dim, device=self.device)

        with torch.no_grad():
            samples = self.generator(z.to(self.device))

        return samples

    def summary(self) -> Dict[str, int]:
        return {
            "generator": count_parameters(self.generator),
            "discriminator": count_parameters(self.discriminator),
            "total": count_parameters(self),
        }
