"""
Selfie background remover package.

Exposes reusable primitives for turning a human-segmentation result into a
mask and a subject cut-out, coordinating model loading and per-image
processing, and serving the FastAPI application.
"""
