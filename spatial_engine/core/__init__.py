"""Core utilities and shared infrastructure.

- config: Configuration loading and validation
- constants: Named constants (acknowledgement token, unit factors, defaults)
- exceptions: Engine exception taxonomy
"""
