"""
User store adapters. Each module provides one UserStoreBase implementation,
selected by ``store.module`` in the configuration.
"""
