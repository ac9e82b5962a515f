"""Infrastructure adapters: persistence, providers, storage, identity, observability."""
