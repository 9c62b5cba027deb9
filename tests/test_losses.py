import math

import pytest
import torch
import torch.nn.functional as F

from dcgan.losses import GANLoss


def test_discriminator_loss_at_zero_logits():
    loss = GANLoss()
    d_loss = loss.discriminator_loss(torch.zeros(4, 1), torch.zeros(4, 1))
    assert d_loss.item() == pytest.approx(2 * math.log(2), rel=1e-5)


def test_generator_loss_matches_bce():
    logits = torch.randn(6, 1)
    g_loss = GANLoss().generator_loss(logits)
    expected = F.binary_cross_entropy_with_logits(logits, torch.ones_like(logits))
    assert g_loss.item() == pytest.approx(expected.item(), rel=1e-5)


def test_label_smoothing_lowers_real_targets():
    real = torch.randn(4, 1)
    fake = torch.randn(4, 1)
    d_loss = GANLoss(label_smoothing=0.1).discriminator_loss(real, fake)
    expected = (F.binary_cross_entropy_with_logits(real, torch.full_like(real, 0.9))
                + F.binary_cross_entropy_with_logits(fake, torch.zeros_like(fake)))
    assert d_loss.item() == pytest.approx(expected.item(), rel=1e-5)


def test_forward_handles_missing_inputs():
    loss = GANLoss()
    d_loss, g_loss = loss(None, torch.zeros(2, 1))
    assert d_loss is None
    assert g_loss.item() == pytest.approx(math.log(2), rel=1e-5)

    d_loss, g_loss = loss(None, None)
    assert d_loss is None and g_loss is None


def test_rejects_invalid_label_smoothing():
    with pytest.raises(ValueError):
        GANLoss(label_smoothing=1.0)
