"""Order lifecycle event pipeline for the serverless e-commerce backend."""

__version__ = '1.0.0'
