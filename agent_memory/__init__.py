"""
Agent Memory - Long-term vector memory for conversational agents

This package stores, recalls, consolidates and decays an agent's
memories, with pluggable embedding providers and vector stores.
"""

__version__ = "1.0.0"
