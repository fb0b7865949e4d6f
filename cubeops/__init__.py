"""cubeops — build, publish and test tooling for the Cube server images."""

__version__ = "0.1.0"
