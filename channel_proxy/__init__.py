"""Nix channel proxy.

A small HTTP service that mirrors an upstream channel's ``nixexprs.tar.xz``,
optionally pre-builds an expression against it to warm the local nix store,
and serves the last successfully published copy.
"""

__version__ = "0.1.0"
