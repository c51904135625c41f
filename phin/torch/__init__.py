# phin/torch/__init__.py
"""
Torch-side components of PHIN: model loading and invocation, the pair and
compute styles, result scatter and the ASE calculator. Keep this module
import-light: avoid eager imports here to prevent circular dependencies.
"""
