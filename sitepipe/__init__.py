"""Sitepipe asset pipeline.

This package builds and publishes a static blog: it compiles Sass, bundles
scripts from a manifest, runs an external static-site generator, serves the
output with live reload and pushes the result to a hosting branch.

Everything is expressed as named tasks with declared dependencies. The CLI
module exposes them by name, the pipeline module wires them together.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
