"""
DCGAN sampler.

Builds the generator and discriminator graphs, optionally restores them from
a checkpoint, and writes generated samples to disk.
"""

import argparse
import logging
import math
import os
from typing import Any, Dict, Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import torch
import torchvision.utils as vutils
from tqdm import tqdm

from dcgan.losses import GANLoss
from dcgan.model import DCGAN
from dcgan.utils import (
    load_config, print_model_summary, save_image_grid, set_seed, setup_logging
)

logger = logging.getLogger(__name__)


def get_default_config() -> Dict[str, Any]:
    """
    Get default configuration for sampling.

    Returns:
        Configuration dictionary
    """
    return {
        # Model parameters
        'noise_dim': 100,
        'image_size': 28,
        'num_channels': 1,
        'leaky_alpha': 0.3,
        'dropout_rate': 0.3,
        'bn_epsilon': 0.001,
        'init_stddev': 0.01,

        # Sampling parameters
        'num_samples': 16,
        'batch_size': 64,
        'nrow': 4,
        'interpolation_steps': 10,
        'label_smoothing': 0.0,
        'seed': 42,

        # Paths
        'sample_dir': 'samples',
        'checkpoint': None,
    }


class DCGANSampler:
    """
    Generates images from a DCGAN, freshly initialized or restored.
    """

    def __init__(self, config: Dict[str, Any], device: Optional[str] = None):
        """
        Initialize the sampler.

        Args:
            config: Configuration dictionary
            device: Device override (default: best available)
        """
        self.config = dict(config)

        if config.get('checkpoint'):
            state = self._load_state(config['checkpoint'])
            self.config.update(self._extract_model_config(state))
        else:
            state = None

        self.model = DCGAN(
            noise_dim=self.config['noise_dim'],
            image_size=self.config['image_size'],
            num_channels=self.config['num_channels'],
            alpha=self.config['leaky_alpha'],
            dropout_rate=self.config['dropout_rate'],
            epsilon=self.config['bn_epsilon'],
            init_stddev=self.config['init_stddev'],
            device=device,
        )
        if state is not None:
            self.model.load_state_dict(state)
            logger.info("Loaded DCGAN from %s", config['checkpoint'])

        self.model.eval()
        self.device = self.model.device
        self.loss_fn = GANLoss(label_smoothing=self.config['label_smoothing'])

    @staticmethod
    def _load_state(checkpoint_path: str) -> Dict[str, torch.Tensor]:
        if not os.path.isfile(checkpoint_path):
            raise ValueError(f"Checkpoint not found: {checkpoint_path}")
        checkpoint = torch.load(checkpoint_path, map_location="cpu")
        if 'model_state_dict' in checkpoint:
            return checkpoint['model_state_dict']
        return checkpoint

    @staticmethod
    def _extract_model_config(model_state: Dict[str, torch.Tensor]) -> Dict[str, int]:
        """
        Infer the network dimensions from a state dict.

        Args:
            model_state: DCGAN state dictionary

        Returns:
            Dictionary with noise_dim, num_channels and image_size
        """
        try:
            w1 = model_state['generator.w1']
            filter3 = model_state['generator.filter3']
            fc1 = model_state['discriminator.fc1_weights']
        except KeyError as e:
            raise ValueError(f"Checkpoint is missing variable {e}") from e

        side = math.isqrt(fc1.shape[0] // 128)
        config = {
            'noise_dim': w1.shape[0],
            'num_channels': filter3.shape[1],
            'image_size': side * 4,
        }
        logger.info("Extracted model configuration: %s", config)
        return config

    def sample_random(self, num_samples: int = 16) -> torch.Tensor:
        """
        Sample random images, batch by batch.

        Args:
            num_samples: Number of samples to generate

        Returns:
            Generated image tensor on the CPU
        """
        if num_samples < 1:
            raise ValueError(f"Number of samples must be at least 1, got {num_samples}")
        batch_size = self.config['batch_size']
        batches = []
        for start in tqdm(range(0, num_samples, batch_size), desc="Sampling", leave=False):
            n = min(batch_size, num_samples - start)
            batches.append(self.model.sample(num_samples=n).cpu())
        return torch.cat(batches, dim=0)

    def interpolate_latent(self, z1: torch.Tensor, z2: torch.Tensor,
                           num_steps: int = 10) -> torch.Tensor:
        """
        Interpolate linearly between two noise vectors.

        Args:
            z1: First noise vector of shape (1, noise_dim)
            z2: Second noise vector of shape (1, noise_dim)
            num_steps: Number of interpolation steps

        Returns:
            Interpolated images
        """
        alphas = torch.linspace(0, 1, num_steps).view(-1, 1)
        interpolated_z = (1 - alphas) * z1 + alphas * z2
        return self.model.sample(z=interpolated_z).cpu()

    @torch.no_grad()
    def score(self, samples: torch.Tensor) -> float:
        """Generator loss of the samples under the discriminator."""
        logits = self.model.discriminator(samples.to(self.device))
        return self.loss_fn.generator_loss(logits).item()

    def save_samples(self, samples: torch.Tensor, filepath: str):
        save_image_grid(samples, filepath, nrow=self.config['nrow'])

    def save_interpolation(self, interpolated_samples: torch.Tensor,
                           filepath: str, title: str = "Latent Interpolation"):
        """
        Save interpolated samples as a titled figure.

        Args:
            interpolated_samples: Interpolated image tensor
            filepath: Path to save the figure
            title: Title for the plot
        """
        grid = vutils.make_grid(interpolated_samples, nrow=len(interpolated_samples),
                                normalize=True, padding=2)
        # Grayscale grids come back with three identical channels
        grid_np = grid[0].numpy() if self.config['num_channels'] == 1 else grid.permute(1, 2, 0).numpy()

        plt.figure(figsize=(12, 3))
        plt.imshow(grid_np, cmap='gray')
        plt.title(title)
        plt.axis('off')
        plt.tight_layout()
        plt.savefig(filepath, dpi=150, bbox_inches='tight')
        plt.close()

        logger.info("Saved interpolation to %s", filepath)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sample from a DCGAN")
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('--checkpoint', type=str, help='Path to model checkpoint')
    parser.add_argument('--output_dir', type=str, help='Output directory')
    parser.add_argument('--num_samples', type=int, help='Number of random samples')
    parser.add_argument('--seed', type=int, help='Random seed')
    parser.add_argument('--device', type=str, help='Device to run on')
    parser.add_argument('--interpolation', action='store_true', help='Generate interpolation')
    parser.add_argument('--interpolation_steps', type=int, help='Number of interpolation steps')
    parser.add_argument('--summary', action='store_true', help='Print model summary')
    parser.add_argument('--verbose', action='store_true', help='Log every built graph node')
    return parser


def main(argv=None):
    """
    Main function for DCGAN sampling.
    """
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    config = get_default_config()
    if args.config:
        config = load_config(args.config, config)

    # Override with command line arguments
    if args.checkpoint:
        config['checkpoint'] = args.checkpoint
    if args.output_dir:
        config['sample_dir'] = args.output_dir
    if args.num_samples:
        config['num_samples'] = args.num_samples
    if args.seed is not None:
        config['seed'] = args.seed
    if args.interpolation_steps:
        config['interpolation_steps'] = args.interpolation_steps

    set_seed(config['seed'])
    os.makedirs(config['sample_dir'], exist_ok=True)

    sampler = DCGANSampler(config, device=args.device)
    if args.summary:
        print_model_summary(sampler.model)

    logger.info("Generating %d random samples on %s", config['num_samples'], sampler.device)
    samples = sampler.sample_random(config['num_samples'])
    sampler.save_samples(samples, os.path.join(config['sample_dir'], "random_samples.png"))
    logger.info("Generator loss on samples: %.4f", sampler.score(samples))

    if args.interpolation:
        z1 = torch.randn(1, config['noise_dim'])
        z2 = torch.randn(1, config['noise_dim'])
        interpolated = sampler.interpolate_latent(z1, z2, config['interpolation_steps'])
        sampler.save_interpolation(interpolated, os.path.join(config['sample_dir'], "interpolation.png"))

    logger.info("All samples saved to %s", config['sample_dir'])
    return samples


if __name__ == "__main__":
    main()
