"""Input-image package.

Scope:
    Resolves the image handed to image-to-3D providers, either the caller's
    own image or one synthesized by a text-to-image provider.

Non-goals:
    - No image editing or background removal.
    - No temporary-file creation; images are held in memory or by URL.
"""
