"""Raffle draw engine: lifecycle, roster, winner selection and reporting."""

__version__ = "0.1.0"
