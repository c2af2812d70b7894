"""Provider clients, registry and response repair for the categoriser."""
