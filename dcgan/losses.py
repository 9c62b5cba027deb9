"""
Loss functions for the DCGAN.

Both losses are built on the logistic loss from ``dcgan.ops`` and take
raw discriminator logits, not probabilities.
"""

from typing import Optional, Tuple

import torch
import torch.nn as nn

from dcgan.ops import sigmoid_cross_entropy_with_logits


class GANLoss(nn.Module):
    """
    Standard GAN loss using sigmoid cross entropy on logits.

    The discriminator tries to label real images 1 and generated images 0.
    The generator tries to have its images labeled 1.
    """

    def __init__(self, label_smoothing: float = 0.0):
        """
        Initialize GAN loss.

        Args:
            label_smoothing: Amount subtracted from the real labels
        """
        super().__init__()
        if not 0.0 <= label_smoothing < 1.0:
            raise ValueError(f"Label smoothing must be in [0, 1), got {label_smoothing}")
        self.label_smoothing = label_smoothing

    def discriminator_loss(self, real_logits: torch.Tensor, fake_logits: torch.Tensor) -> torch.Tensor:
        """
        Compute discriminator loss.

        Args:
            real_logits: Logits for real images
            fake_logits: Logits for generated images

        Returns:
            Discriminator loss
        """
        real_labels = torch.full_like(real_logits, 1.0 - self.label_smoothing)
        fake_labels = torch.zeros_like(fake_logits)

        real_loss = sigmoid_cross_entropy_with_logits(real_labels, real_logits).mean()
        fake_loss = sigmoid_cross_entropy_with_logits(fake_labels, fake_logits).mean()

        return real_loss + fake_loss

    def generator_loss(self, fake_logits: torch.Tensor) -> torch.Tensor:
        """
        Compute generator loss.

        Args:
            fake_logits: Logits for generated images

        Returns:
            Generator loss
        """
        real_labels = torch.ones_like(fake_logits)
        return sigmoid_cross_entropy_with_logits(real_labels, fake_logits).mean()

    def forward(self,
                real_logits: Optional[torch.Tensor],
                fake_logits: Optional[torch.Tensor]) -> Tuple[Optional[torch.Tensor], Optional[torch.Tensor]]:
        """
        Compute both discriminator and generator losses.

        Returns:
            Tuple of (discriminator_loss, generator_loss), None where an input is missing
        """
        if real_logits is not None and fake_logits is not None:
            d_loss = self.discriminator_loss(real_logits, fake_logits)
        else:
            d_loss = None
        if fake_logits is not None:
            g_loss = self.generator_loss(fake_logits)
        else:
            g_loss = None

        return d_loss, g_loss
