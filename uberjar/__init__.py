"""uberjar.

A small build utility that merges resolved library archives, exploded library
directories and compiled classes into a single executable ``.jar`` file.
"""

__all__: list[str] = ["__version__"]

__version__: str = "0.1.0"
