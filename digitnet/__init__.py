"""
digitnet package
~~~~~~~~~~~~~~~~

Three-layer neural network for MNIST digit recognition, built on a small
fixed-shape matrix type. Contains the matrix engine, the network and its
weight format, CSV row parsing, the command-line driver, SQLite model
persistence and the API server.
"""

__version__ = "1.0.0"
