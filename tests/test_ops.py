import math

import pytest
import torch
import torch.nn.functional as F

from dcgan import ops


def test_batch_normalization_matches_formula():
    x = torch.randn(4, 3)
    mean = torch.tensor([0.5, -1.0, 2.0])
    variance = torch.tensor([1.0, 4.0, 0.25])
    offset = torch.tensor([0.1, 0.2, 0.3])
    scale = torch.tensor([2.0, 1.0, 0.5])

    out = ops.batch_normalization(x, mean, variance, offset, scale, 0.001)

    expected = (x - mean) / torch.sqrt(variance + 0.001) * scale + offset
    assert torch.allclose(out, expected, atol=1e-5)


def test_batch_normalization_accepts_floats_and_missing_offset():
    x = torch.randn(2, 5)
    out = ops.batch_normalization(x, 0.0, 1.0, None, None, 0.001)
    assert torch.allclose(out, x / math.sqrt(1.001), atol=1e-6)


def test_fused_batch_norm_training_uses_batch_statistics():
    x = torch.randn(8, 4, 5, 5) * 3 + 2
    out = ops.fused_batch_norm(x, torch.ones(4), torch.zeros(4), epsilon=0.001)

    expected = F.batch_norm(x, None, None, training=True, eps=0.001)
    assert torch.allclose(out, expected, atol=1e-4)
    per_channel_mean = out.mean(dim=(0, 2, 3))
    assert torch.allclose(per_channel_mean, torch.zeros(4), atol=1e-4)


def test_fused_batch_norm_updates_and_uses_running_statistics():
    x = torch.randn(8, 4, 3, 3) + 5
    mean = torch.zeros(4)
    variance = torch.ones(4)

    ops.fused_batch_norm(x, torch.ones(4), torch.zeros(4), mean, variance, momentum=0.1)
    assert torch.allclose(mean, 0.1 * x.mean(dim=(0, 2, 3)), atol=1e-5)
    assert torch.allclose(variance, 0.9 + 0.1 * x.var(dim=(0, 2, 3), unbiased=True), atol=1e-4)

    out = ops.fused_batch_norm(x, torch.ones(4), torch.zeros(4), mean, variance, training=False)
    expected = (x - mean.view(1, -1, 1, 1)) / torch.sqrt(variance.view(1, -1, 1, 1) + 0.001)
    assert torch.allclose(out, expected, atol=1e-5)


def test_fused_batch_norm_inference_requires_running_statistics():
    with pytest.raises(ValueError):
        ops.fused_batch_norm(torch.randn(2, 3, 4, 4), torch.ones(3), torch.zeros(3), training=False)


def test_leaky_relu():
    x = torch.tensor([-2.0, 0.0, 3.0])
    assert torch.allclose(ops.leaky_relu(x, 0.3), torch.tensor([-0.6, 0.0, 3.0]))


@pytest.mark.parametrize("alpha", [-0.1, 1.5])
def test_leaky_relu_rejects_alpha_outside_unit_interval(alpha):
    with pytest.raises(ValueError):
        ops.leaky_relu(torch.ones(3), alpha)


def test_dropout_keeps_or_scales():
    torch.manual_seed(0)
    x = torch.ones(1000)
    out = ops.dropout(x, 0.3)

    kept = out[out != 0]
    assert torch.allclose(kept, torch.full_like(kept, 1 / 0.7))
    # About 70% of the elements survive
    assert 0.6 < kept.numel() / x.numel() < 0.8


def test_dropout_is_identity_outside_training_or_at_zero_rate():
    x = torch.randn(10)
    assert torch.equal(ops.dropout(x, 0.3, training=False), x)
    assert torch.equal(ops.dropout(x, 0.0), x)


@pytest.mark.parametrize("rate", [-0.1, 1.0, 1.5])
def test_dropout_rejects_invalid_rate(rate):
    with pytest.raises(ValueError):
        ops.dropout(torch.ones(3), rate)


def test_sigmoid_cross_entropy_matches_reference():
    logits = torch.tensor([-100.0, -2.0, 0.0, 1.5, 100.0])
    labels = torch.tensor([0.0, 1.0, 0.5, 0.0, 1.0])

    out = ops.sigmoid_cross_entropy_with_logits(labels, logits)

    expected = F.binary_cross_entropy_with_logits(logits, labels, reduction='none')
    assert torch.allclose(out, expected, atol=1e-5)
    assert torch.isfinite(out).all()


def test_sigmoid_cross_entropy_gradient_at_zero():
    logits = torch.zeros(3, requires_grad=True)
    ops.sigmoid_cross_entropy_with_logits(torch.ones(3), logits).sum().backward()
    assert torch.allclose(logits.grad, torch.full((3,), -0.5))


def test_sigmoid_cross_entropy_rejects_shape_mismatch():
    with pytest.raises(ValueError):
        ops.sigmoid_cross_entropy_with_logits(torch.ones(3), torch.ones(4))


def test_glorot_fans():
    assert ops.glorot_fans((100, 50)) == (100.0, 50.0)
    assert ops.glorot_fans((128, 256, 5, 5)) == (25.0 * 256, 25.0 * 128)


def test_glorot_uniform_bounds():
    shape = (64, 1, 5, 5)
    limit = math.sqrt(3.0 / ((25 * 1 + 25 * 64) / 2.0))
    values = ops.glorot_uniform(shape)

    assert values.shape == shape
    assert values.min() >= -limit
    assert values.max() < limit
    assert values.std() > limit / 4


def test_glorot_uniform_small_fans_use_unit_scale():
    values = ops.glorot_uniform((1, 1))
    assert values.abs().max() <= math.sqrt(3.0)


def test_glorot_uniform_rejects_other_ranks():
    with pytest.raises(ValueError):
        ops.glorot_uniform((3, 4, 5))


def test_conv2d_same_padding_shapes():
    x = torch.randn(2, 1, 28, 28)
    out = ops.conv2d(x, torch.randn(64, 1, 5, 5), strides=(1, 2, 2, 1))
    assert out.shape == (2, 64, 14, 14)

    out = ops.conv2d(out, torch.randn(128, 64, 5, 5), strides=2)
    assert out.shape == (2, 128, 7, 7)


def test_conv2d_same_padding_puts_extra_pixel_at_end():
    x = torch.randn(2, 1, 28, 28)
    w = torch.randn(64, 1, 5, 5)

    out = ops.conv2d(x, w, strides=2)

    expected = F.conv2d(F.pad(x, (1, 2, 1, 2)), w, stride=2)
    assert torch.allclose(out, expected, atol=1e-4)


def test_conv2d_transpose_same_crops_extra_pixel_at_end():
    x = torch.randn(2, 128, 7, 7)
    w = torch.randn(128, 64, 5, 5)

    out = ops.conv2d_transpose(x, w, (2, 64, 14, 14), strides=2)

    # Full output is 17x17; SAME drops one leading and two trailing rows/columns
    full = F.conv_transpose2d(x, w, stride=2)
    assert torch.allclose(out, full[:, :, 1:15, 1:15], atol=1e-3)


def test_conv2d_valid_padding():
    out = ops.conv2d(torch.randn(1, 3, 10, 10), torch.randn(4, 3, 3, 3), padding="VALID")
    assert out.shape == (1, 4, 8, 8)


def test_conv2d_rejects_channel_mismatch():
    with pytest.raises(ValueError):
        ops.conv2d(torch.randn(1, 3, 8, 8), torch.randn(4, 2, 3, 3))


def test_conv2d_transpose_is_gradient_of_conv2d():
    x = torch.randn(2, 64, 14, 14, requires_grad=True)
    filter = torch.randn(128, 64, 5, 5)
    y = ops.conv2d(x, filter, strides=2)
    grad_out = torch.randn_like(y)
    (grad_x,) = torch.autograd.grad(y, x, grad_out)

    # conv2d filter (out, in, kh, kw) is used as (in, out, kh, kw) by the transpose
    out = ops.conv2d_transpose(grad_out, filter, (2, 64, 14, 14), strides=2)

    assert out.shape == (2, 64, 14, 14)
    assert torch.allclose(out, grad_x, atol=1e-3)


@pytest.mark.parametrize("in_size,out_size,stride", [(7, 7, 1), (7, 14, 2), (14, 28, 2), (4, 7, 2)])
def test_conv2d_transpose_same_output_size(in_size, out_size, stride):
    x = torch.randn(3, 8, in_size, in_size)
    out = ops.conv2d_transpose(x, torch.randn(8, 4, 5, 5), (3, 4, out_size, out_size),
                               strides=(1, stride, stride, 1))
    assert out.shape == (3, 4, out_size, out_size)


def test_conv2d_transpose_valid_padding():
    out = ops.conv2d_transpose(torch.randn(1, 2, 4, 4), torch.randn(2, 3, 3, 3), (1, 3, 10, 10),
                               strides=2, padding="VALID")
    assert out.shape == (1, 3, 10, 10)


def test_conv2d_transpose_rejects_bad_arguments():
    x = torch.randn(2, 8, 7, 7)
    filter = torch.randn(8, 4, 5, 5)
    with pytest.raises(ValueError):
        ops.conv2d_transpose(x, filter, (2, 4, 20, 20), strides=2)
    with pytest.raises(ValueError):
        ops.conv2d_transpose(x, filter, (2, 5, 14, 14), strides=2)
    with pytest.raises(ValueError):
        ops.conv2d_transpose(x, filter, (3, 4, 14, 14), strides=2)
    with pytest.raises(ValueError):
        ops.conv2d_transpose(x, filter, (2, 4, 14, 14), strides=(2, 2, 2, 1))
    with pytest.raises(ValueError):
        ops.conv2d_transpose(x, filter, (2, 4, 14, 14), strides=2, padding="FULL")


def test_bias_add():
    x = torch.zeros(2, 3, 4, 4)
    out = ops.bias_add(x, torch.tensor([1.0, 2.0, 3.0]))
    assert torch.equal(out[:, 1], torch.full((2, 4, 4), 2.0))

    out = ops.bias_add(torch.zeros(2, 1), torch.tensor([0.5]))
    assert torch.equal(out, torch.full((2, 1), 0.5))
