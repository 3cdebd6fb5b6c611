"""ProjectSync Mutations — validated, ownership-checked writes."""

from projectsync.mutations.gateway import DeleteOutcome, MutationGateway  # noqa: F401

__all__ = ["DeleteOutcome", "MutationGateway"]
