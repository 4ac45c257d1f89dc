"""K/pi yields versus tag multiplicity in hadronic Z decays"""

__version__ = "0.1.0"
