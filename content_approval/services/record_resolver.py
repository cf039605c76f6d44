"""
Record Resolver

Locates a post across the three partition stores (drafting, calendar-scheduled,
calendar-unscheduled) and writes mutated records back to the partition they
were read from.
"""

import logging
from typing import Iterable, List, Optional, Tuple, Union
from sqlalchemy.orm import Session

from content_approval.db.models import (
    PARTITION_MODELS,
    Partition,
    PostRecordMixin,
    PostType,
)
from content_approval.core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

LOOKUP_ORDER = (Partition.DRAFTING, Partition.SCHEDULED, Partition.UNSCHEDULED)

_TYPE_PARTITIONS = {
    PostType.SCHEDULED: (Partition.DRAFTING,),
    PostType.PLANNER_SCHEDULED: (Partition.SCHEDULED, Partition.UNSCHEDULED),
}


class ResolvedPost:
    """A post together with the partition it was found in"""

    def __init__(self, post: PostRecordMixin, partition: Partition):
        self.post = post
        self.partition = partition

    @property
    def post_id(self) -> str:
        return self.post.id

    @property
    def post_type(self) -> PostType:
        return post_type_for(self.partition)

    def __repr__(self):
        return f"<ResolvedPost(id={self.post.id}, partition={self.partition.value})>"


def post_type_for(partition: Union[Partition, str]) -> PostType:
    """Classify a partition into the decision-record post_type"""
    partition = Partition(partition)
    if partition == Partition.DRAFTING:
        return PostType.SCHEDULED
    return PostType.PLANNER_SCHEDULED


def partitions_for(post_type: Union[PostType, str]) -> Tuple[Partition, ...]:
    """Partitions a post_type may live in, in lookup order"""
    try:
        return _TYPE_PARTITIONS[PostType(post_type)]
    except ValueError:
        raise ValidationError(
            f"Unknown post_type '{post_type}'",
            details={"allowed": [t.value for t in PostType]},
        )


class RecordResolver:
    """
    Finds posts by id across partitions.

    Ids are only unique within a partition; probing goes drafting, then
    scheduled, then unscheduled, and the first hit wins.
    """

    def resolve(
        self,
        db: Session,
        post_id: str,
        post_type: Optional[Union[PostType, str]] = None,
    ) -> ResolvedPost:
        partitions = partitions_for(post_type) if post_type is not None else LOOKUP_ORDER

        for partition in partitions:
            model = PARTITION_MODELS[partition]
            post = db.query(model).filter(model.id == post_id).first()
            if post is not None:
                return ResolvedPost(post, partition)

        if post_type is not None:
            raise NotFoundError(f"Post {post_id} not found for post_type '{PostType(post_type).value}'")
        raise NotFoundError(f"Post {post_id} not found")

    def resolve_many(
        self,
        db: Session,
        refs: Iterable[Tuple[str, Optional[str]]],
    ) -> List[ResolvedPost]:
        """
        Resolve (post_id, post_type) pairs, skipping any that no longer exist.

        Order of the input is preserved.
        """
        resolved = []
        for post_id, post_type in refs:
            try:
                resolved.append(self.resolve(db, post_id, post_type))
            except NotFoundError:
                logger.warning(f"Referenced post {post_id} ({post_type}) no longer exists, skipping")
        return resolved

    def save(self, db: Session, resolved: ResolvedPost) -> PostRecordMixin:
        """
        Persist a mutated record to its owning partition.

        The caller owns the transaction; this flushes but does not commit.
        """
        post = resolved.post
        if post.partition != resolved.partition:
            raise ValidationError(
                f"Refusing to write post {post.id} from partition "
                f"'{post.partition.value}' into '{resolved.partition.value}'"
            )

        db.add(post)
        db.flush()
        return post


def get_record_resolver() -> RecordResolver:
    """Factory function to get record resolver instance"""
    return RecordResolver()
