"""Tool providers. Each lives in its own package exposing ``tools.register_tools``."""
