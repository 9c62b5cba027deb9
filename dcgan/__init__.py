"""
Deep Convolutional GAN (DCGAN) built from explicit PyTorch graph operations.

This package provides the graph-building helpers, the generator and
discriminator networks, the logistic GAN loss, and a sampling entry point.
"""
