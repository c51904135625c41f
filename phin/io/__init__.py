# phin/io/__init__.py
"""
Host-side graph construction for PHIN.

Everything in this subpackage works on numpy arrays owned by the host (or by
reusable scratch buffers); only :mod:`phin.io.assemble` produces torch
tensors. Keep this module import-light.
"""
