"""
patchloop - streaming edit directives, a pending-change overlay and a bounded
typecheck repair loop for agent-driven code generation.
"""
__version__ = "0.1.0"
