"""api.v1 package.

Keep this file minimal to avoid circular imports.
Submodules are imported directly where needed, e.g.:

    from app.api.v1 import disassemble
    # or
    from app.api.v1.disassemble import router
"""
