"""
wavesched - Infrastructure Package

Process-level plumbing shared by the scheduler: layered YAML config
loading (infra.config) and JSON structured logging (infra.logging).
"""
