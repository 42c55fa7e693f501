"""Still-image writers, video outputs and simple encoders for camera capture pipelines."""

__version__ = "0.1.0"