"""services/ -- Domain services composing tokens, entitlements and stores into route-level operations."""
