"""
Graph-building helpers for the DCGAN networks.

Every helper is composed from plain PyTorch primitives so that the
numerical formula of each building block stays visible. Each built node
is reported on the module logger at DEBUG level.
"""

import logging
import math
from typing import Optional, Sequence, Tuple, Union

import torch
import torch.nn.functional as F

logger = logging.getLogger(__name__)

Strides = Union[int, Sequence[int]]


def _log_node(name: str, output: torch.Tensor) -> torch.Tensor:
    logger.debug("Node building status: %s -> %s", name, tuple(output.shape))
    return output


def _as_tensor(value, like: torch.Tensor) -> torch.Tensor:
    if isinstance(value, torch.Tensor):
        return value
    return torch.as_tensor(value, dtype=like.dtype, device=like.device)


def _normalize_strides(strides: Strides) -> Tuple[int, int]:
    """
    Accept an int, an (h, w) pair or an NHWC-style (1, h, w, 1) tuple.
    """
    if isinstance(strides, int):
        return strides, strides
    strides = tuple(strides)
    if len(strides) == 2:
        return strides[0], strides[1]
    if len(strides) == 4:
        if strides[0] != 1 or strides[3] != 1:
            raise ValueError(f"Strides on batch and channel dimensions must be 1, got {strides}")
        return strides[1], strides[2]
    raise ValueError(f"Unsupported strides: {strides}")


def _same_padding(in_size: int, out_size: int, kernel: int, stride: int) -> Tuple[int, int]:
    # Extra padding goes to the end, as in TensorFlow.
    total = max((out_size - 1) * stride + kernel - in_size, 0)
    return total // 2, total - total // 2


def batch_normalization(x: torch.Tensor,
                        mean,
                        variance,
                        offset,
                        scale,
                        variance_epsilon) -> torch.Tensor:
    """
    Normalize x with the given statistics.

    Computes ``x * inv + (offset - mean * inv)`` where
    ``inv = rsqrt(variance + variance_epsilon) * scale``.

    Args:
        x: Input tensor
        mean: Mean, broadcastable against x
        variance: Variance, broadcastable against x
        offset: Offset (beta) or None
        scale: Scale (gamma) or None
        variance_epsilon: Small float added to the variance

    Returns:
        Normalized tensor with the shape of x
    """
    mean = _as_tensor(mean, x)
    variance = _as_tensor(variance, x)

    inv = torch.rsqrt(variance + variance_epsilon)
    if scale is not None:
        inv = inv * _as_tensor(scale, x)
    _log_node("batchnorm/inv", inv)

    if offset is not None:
        shift = _as_tensor(offset, x) - mean * inv
    else:
        shift = -mean * inv

    output = x * inv.to(x.dtype) + shift.to(x.dtype)
    return _log_node("batchnorm", output)


def fused_batch_norm(x: torch.Tensor,
                     scale: torch.Tensor,
                     offset: torch.Tensor,
                     mean: Optional[torch.Tensor] = None,
                     variance: Optional[torch.Tensor] = None,
                     epsilon: float = 0.001,
                     training: bool = True,
                     momentum: float = 0.1) -> torch.Tensor:
    """
    Per-channel batch normalization over dimension 1.

    In training mode the batch statistics are used and, when running
    ``mean``/``variance`` buffers are passed, they are updated in place.
    Outside training mode the running statistics are used.

    Args:
        x: Input tensor of shape (N, C, ...)
        scale: Per-channel scale of shape (C,)
        offset: Per-channel offset of shape (C,)
        mean: Running mean buffer of shape (C,) or None
        variance: Running variance buffer of shape (C,) or None
        epsilon: Small float added to the variance
        training: Whether to normalize with batch statistics
        momentum: Weight of the batch statistics in the running update

    Returns:
        Normalized tensor with the shape of x
    """
    if x.dim() < 2:
        raise ValueError(f"fused_batch_norm expects at least 2 dimensions, got shape {tuple(x.shape)}")
    channels = x.size(1)
    if scale.shape != (channels,) or offset.shape != (channels,):
        raise ValueError(f"scale and offset must have shape ({channels},)")

    has_running_stats = mean is not None and variance is not None
    if not training and not has_running_stats:
        raise ValueError("Running mean and variance are required outside training mode")

    # Statistics broadcast along dim 1
    view_shape = [1, channels] + [1] * (x.dim() - 2)
    reduce_dims = [d for d in range(x.dim()) if d != 1]

    if training:
        batch_mean = x.mean(dim=reduce_dims)
        batch_var = x.var(dim=reduce_dims, unbiased=False)
        if has_running_stats:
            n = x.numel() // channels
            with torch.no_grad():
                unbiased_var = batch_var * n / max(n - 1, 1)
                mean.mul_(1.0 - momentum).add_(momentum * batch_mean.detach())
                variance.mul_(1.0 - momentum).add_(momentum * unbiased_var.detach())
        use_mean, use_var = batch_mean, batch_var
    else:
        use_mean, use_var = mean, variance

    output = batch_normalization(x,
                                 use_mean.view(view_shape),
                                 use_var.view(view_shape),
                                 offset.view(view_shape),
                                 scale.view(view_shape),
                                 epsilon)
    return _log_node("fused_batchnorm", output)


def leaky_relu(x: torch.Tensor, alpha: float = 0.3) -> torch.Tensor:
    """Leaky ReLU, `max(x, alpha * x)` for alpha in [0, 1]."""
    if not 0.0 <= alpha <= 1.0:
        raise ValueError(f"Leaky ReLU alpha must be in [0, 1], got {alpha}")
    output = torch.where(x >= 0, x, x * alpha)
    return _log_node("leaky_relu", output)


def dropout(x: torch.Tensor,
            rate: float,
            training: bool = True,
            generator: Optional[torch.Generator] = None) -> torch.Tensor:
    """
    Inverted dropout.

    Keeps each element with probability ``1 - rate`` and scales the kept
    elements by ``1 / (1 - rate)``.

    Args:
        x: Input tensor
        rate: Probability of dropping an element, in [0, 1)
        training: Dropout is only applied in training mode
        generator: Optional random generator

    Returns:
        Tensor with the shape of x
    """
    if not 0.0 <= rate < 1.0:
        raise ValueError(f"Dropout rate must be in [0, 1), got {rate}")
    if not training or rate == 0.0:
        return x

    keep_prob = 1.0 - rate
    random_value = torch.rand(x.shape, generator=generator, dtype=x.dtype, device=x.device)
    # floor(U[0, 1) + keep_prob) is 1 with probability keep_prob
    binary_tensor = torch.floor(random_value + keep_prob)
    _log_node("dropout/mask", binary_tensor)

    output = (x / keep_prob) * binary_tensor
    return _log_node("dropout", output)


def sigmoid_cross_entropy_with_logits(labels: torch.Tensor, logits: torch.Tensor) -> torch.Tensor:
    """
    Element-wise logistic loss computed from logits.

    The loss ``x - x * z + log(1 + exp(-x))`` is evaluated in the stable
    form ``max(x, 0) - x * z + log(1 + exp(-abs(x)))``, with max and abs
    written as selects so the gradient is defined at zero.

    Args:
        labels: Targets z, same shape as logits
        logits: Unscaled scores x

    Returns:
        Unreduced loss with the shape of logits
    """
    labels = _as_tensor(labels, logits)
    if labels.shape != logits.shape:
        raise ValueError(f"labels and logits must have the same shape, "
                         f"got {tuple(labels.shape)} and {tuple(logits.shape)}")

    zeros = torch.zeros_like(logits)
    cond = logits >= zeros
    relu_logits = torch.where(cond, logits, zeros)
    neg_abs_logits = torch.where(cond, -logits, logits)

    output = (relu_logits - logits * labels) + torch.log1p(torch.exp(neg_abs_logits))
    return _log_node("sigmoid_cross_entropy", output)


def glorot_fans(shape: Sequence[int]) -> Tuple[float, float]:
    """
    Compute (fan_in, fan_out) for a 2-D matrix or a 4-D convolution filter.

    4-D filters use the PyTorch layout with the two spatial dimensions last.
    """
    shape = tuple(shape)
    if len(shape) == 2:
        return float(shape[0]), float(shape[1])
    if len(shape) == 4:
        receptive_field_size = float(shape[2] * shape[3])
        return receptive_field_size * shape[1], receptive_field_size * shape[0]
    raise ValueError(f"Glorot initialization supports 2-D and 4-D shapes only, got {shape}")


def glorot_uniform(shape: Sequence[int],
                   generator: Optional[torch.Generator] = None,
                   dtype: torch.dtype = torch.float32,
                   device: Optional[torch.device] = None) -> torch.Tensor:
    """
    Sample a tensor from the Glorot (Xavier) uniform distribution.

    Values are drawn from ``U[-limit, limit)`` with
    ``limit = sqrt(3 / max(1, (fan_in + fan_out) / 2))``.

    Args:
        shape: 2-D or 4-D shape
        generator: Optional random generator
        dtype: Data type of the result
        device: Device of the result

    Returns:
        Initialized tensor of the given shape
    """
    fan_in, fan_out = glorot_fans(shape)

    scale = 1.0 / max(1.0, (fan_in + fan_out) / 2.0)
    limit = math.sqrt(3.0 * scale)
    minval, maxval = -limit, limit

    random_value = torch.rand(tuple(shape), generator=generator, dtype=dtype, device=device)
    output = random_value * (maxval - minval) + minval
    return _log_node("glorot_uniform", output)


def conv2d(x: torch.Tensor,
           filter: torch.Tensor,
           strides: Strides = 1,
           padding: str = "SAME") -> torch.Tensor:
    """
    2-D convolution with TensorFlow-style SAME or VALID padding.

    Args:
        x: Input of shape (N, C_in, H, W)
        filter: Filter of shape (C_out, C_in, kh, kw)
        strides: Int, (h, w) pair or (1, h, w, 1)
        padding: "SAME" or "VALID"

    Returns:
        Output of shape (N, C_out, H_out, W_out)
    """
    if x.dim() != 4 or filter.dim() != 4:
        raise ValueError("conv2d expects a 4-D input and a 4-D filter")
    if x.size(1) != filter.size(1):
        raise ValueError(f"Input has {x.size(1)} channels but filter expects {filter.size(1)}")
    sh, sw = _normalize_strides(strides)
    kh, kw = filter.shape[2], filter.shape[3]

    if padding == "SAME":
        in_h, in_w = x.shape[2], x.shape[3]
        top, bottom = _same_padding(in_h, math.ceil(in_h / sh), kh, sh)
        left, right = _same_padding(in_w, math.ceil(in_w / sw), kw, sw)
        x = F.pad(x, (left, right, top, bottom))
    elif padding != "VALID":
        raise ValueError(f"Unknown padding: {padding}")

    output = F.conv2d(x, filter, stride=(sh, sw))
    return _log_node("conv2d", output)


def bias_add(x: torch.Tensor, bias: torch.Tensor) -> torch.Tensor:
    """Add a per-channel bias (dim 1 for images, last dim for matrices)."""
    if x.dim() == 2:
        output = x + bias
    else:
        output = x + bias.view([1, -1] + [1] * (x.dim() - 2))
    return _log_node("bias_add", output)


def conv2d_transpose(x: torch.Tensor,
                     filter: torch.Tensor,
                     output_size: Sequence[int],
                     strides: Strides = 1,
                     padding: str = "SAME") -> torch.Tensor:
    """
    Transposed 2-D convolution, i.e. the gradient of conv2d w.r.t. its input.

    Args:
        x: Input of shape (N, C_in, H, W)
        filter: Filter of shape (C_in, C_out, kh, kw)
        output_size: Full output shape (N, C_out, H_out, W_out)
        strides: Int, (h, w) pair or (1, h, w, 1)
        padding: "SAME" or "VALID"

    Returns:
        Output of shape output_size
    """
    output_size = tuple(int(s) for s in output_size)
    if x.dim() != 4 or filter.dim() != 4 or len(output_size) != 4:
        raise ValueError("conv2d_transpose expects 4-D input, filter and output size")
    n, out_channels, out_h, out_w = output_size
    if n != x.size(0):
        raise ValueError(f"Output batch size {n} does not match input batch size {x.size(0)}")
    if x.size(1) != filter.size(0):
        raise ValueError(f"Input has {x.size(1)} channels but filter expects {filter.size(0)}")
    if out_channels != filter.size(1):
        raise ValueError(f"Output has {out_channels} channels but filter produces {filter.size(1)}")

    sh, sw = _normalize_strides(strides)
    kh, kw = filter.shape[2], filter.shape[3]
    in_h, in_w = x.shape[2], x.shape[3]

    if padding == "SAME":
        expected = (math.ceil(out_h / sh), math.ceil(out_w / sw))
        pad_h = _same_padding(out_h, in_h, kh, sh)[0]
        pad_w = _same_padding(out_w, in_w, kw, sw)[0]
    elif padding == "VALID":
        expected = (math.ceil((out_h - kh + 1) / sh), math.ceil((out_w - kw + 1) / sw))
        pad_h, pad_w = 0, 0
    else:
        raise ValueError(f"Unknown padding: {padding}")

    if expected != (in_h, in_w):
        raise ValueError(f"Output size {(out_h, out_w)} is not reachable from input size "
                         f"{(in_h, in_w)} with strides {(sh, sw)} and {padding} padding")

    # Missing trailing rows/columns come from output_padding, extra ones are cropped
    produced_h = (in_h - 1) * sh + kh - 2 * pad_h
    produced_w = (in_w - 1) * sw + kw - 2 * pad_w
    output_padding = (max(out_h - produced_h, 0), max(out_w - produced_w, 0))

    output = F.conv_transpose2d(x, filter,
                                stride=(sh, sw),
                                padding=(pad_h, pad_w),
                                output_padding=output_padding)
    output = output[:, :, :out_h, :out_w]
    return _log_node("conv2d_transpose", output)
