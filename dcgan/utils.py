import importlib.util
import logging
import os
import random
from typing import Any, Dict

import numpy as np
import torch
import torch.nn as nn
import torchvision.utils as vutils

logger = logging.getLogger(__name__)

LOG_FORMAT = '[%(asctime)s] %(levelname)s: %(message)s'


def setup_logging(level: int = logging.INFO):
    """
    Initialize logging configuration for the project.

    Args:
        level: Root log level
    """
    logging.basicConfig(level=level, format=LOG_FORMAT)


def set_seed(seed: int):
    """
    Set random seed for reproducibility.

    Args:
        seed: Random seed
    """
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)
    torch.backends.cudnn.deterministic = True
    torch.backends.cudnn.benchmark = False
    os.environ['PYTHONHASHSEED'] = str(seed)


def get_device() -> torch.device:
    """
    Get the best available device.

    Returns:
        Device to use
    """
    if torch.cuda.is_available():
        return torch.device("cuda")
    elif torch.backends.mps.is_available():
        return torch.device("mps")
    else:
        return torch.device("cpu")


def count_parameters(model: nn.Module) -> int:
    """
    Count the number of trainable parameters in a model.

    Args:
        model: Model to count parameters for

    Returns:
        Number of trainable parameters
    """
    return sum(p.numel() for p in model.parameters() if p.requires_grad)


def compute_model_size_mb(model: nn.Module) -> float:
    """
    Compute model size in MB, buffers included.

    Args:
        model: Model to compute size for

    Returns:
        Model size in MB
    """
    param_size = 0
    buffer_size = 0

    for param in model.parameters():
        param_size += param.nelement() * param.element_size()

    for buffer in model.buffers():
        buffer_size += buffer.nelement() * buffer.element_size()

    return (param_size + buffer_size) / 1024 / 1024


def print_model_summary(model: nn.Module):
    """
    Print model summary including parameter count and size.

    Args:
        model: Model to summarize
    """
    total_params = count_parameters(model)
    model_size = compute_model_size_mb(model)

    print("Model Summary:")
    print(f"  Total parameters: {total_params:,}")
    print(f"  Model size: {model_size:.2f} MB")
    for name, param in model.named_parameters():
        print(f"  {name}: {tuple(param.shape)}")


def save_image_grid(images: torch.Tensor, filepath: str, nrow: int = 4, normalize: bool = True):
    """
    Save a grid of images.

    Args:
        images: Tensor of images (N, C, H, W)
        filepath: Path to save the grid
        nrow: Number of images per row
        normalize: Rescale values to [0, 1] before saving
    """
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)

    grid = vutils.make_grid(images.detach().cpu(), nrow=nrow, normalize=normalize, padding=2)
    vutils.save_image(grid, filepath)
    logger.info("Saved image grid to %s", filepath)


def load_config(config_path: str, default_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Load configuration from a Python file.

    The file may define ``DEFAULT_CONFIG``; its entries override the defaults.

    Args:
        config_path: Path to configuration file
        default_config: Configuration to start from

    Returns:
        Configuration dictionary
    """
    if not os.path.isfile(config_path):
        raise ValueError(f"Config file not found: {config_path}")

    config = dict(default_config)

    spec = importlib.util.spec_from_file_location("config", config_path)
    config_module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(config_module)

    if hasattr(config_module, 'DEFAULT_CONFIG'):
        config.update(config_module.DEFAULT_CONFIG)

    return config
