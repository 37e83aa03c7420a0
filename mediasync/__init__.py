"""Cloudinary to Strapi media reconciliation."""

__version__ = "0.1.0"
