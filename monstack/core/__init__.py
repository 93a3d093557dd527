"""
monstack Core

Configuration, inventory, rendering and the secret store.
"""
