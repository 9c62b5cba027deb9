"""
Default configuration for sampling from the MNIST-sized DCGAN.
"""

# Model configuration
MODEL_CONFIG = {
    'noise_dim': 100,
    'image_size': 28,
    'num_channels': 1,
    'leaky_alpha': 0.3,
    'dropout_rate': 0.3,
    'bn_epsilon': 0.001,
    'init_stddev': 0.01,
}

# Sampling configuration
SAMPLING_CONFIG = {
    'num_samples': 64,
    'batch_size': 64,
    'nrow': 8,
    'interpolation_steps': 10,
    'label_smoothing': 0.0,
    'seed': 42,
}

# Paths configuration
PATHS_CONFIG = {
    'sample_dir': 'samples',
    'checkpoint': None,
}

# Combine all configurations
DEFAULT_CONFIG = {
    **MODEL_CONFIG,
    **SAMPLING_CONFIG,
    **PATHS_CONFIG,
}
