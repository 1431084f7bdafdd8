"""boqcalc - quantity calculation engine for bill-of-quantities assemblies."""

__version__ = "0.1.0"
