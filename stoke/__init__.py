"""Stoke incremental static site engine.

Stoke compiles Jinja templates that may embed restricted Python *generate
scripts*. Scripts decide which pages a template produces and with which data;
the engine records what every output depends on so that, when a template or
data file changes, only the affected pages are rebuilt.

The main entry point is the CLI module (``stoke build`` and ``stoke watch``);
the engine itself lives in :mod:`stoke.engine`.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
