from . import core, fido

__all__ = ["core", "fido"]
