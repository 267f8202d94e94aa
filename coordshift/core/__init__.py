"""Core utilities and shared infrastructure.

- config: Configuration loading and validation
- constants: Named constants (angles, tolerances, defaults)
- context: Per-thread configuration, error state and collaborator handles
- exceptions: Custom exception hierarchy and numeric error codes
"""
