"""Nomenclador: resolución y desambiguación de nombres comunes por taxón."""

__version__ = "0.3.0"
