"""Repositories over the relational and vector stores."""

from aimo.repositories.memo import AttachmentResolver, MemoRepository, store_stage
from aimo.repositories.relation import MemoRelationRepository
from aimo.repositories.tag import TagRepository

__all__ = [
    "AttachmentResolver",
    "MemoRepository",
    "MemoRelationRepository",
    "TagRepository",
    "store_stage",
]
