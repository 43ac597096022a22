"""Toolchain Provisioner — reproducible compiler toolchain image builds."""

__version__ = "0.1.0"
