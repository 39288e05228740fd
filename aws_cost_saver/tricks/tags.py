"""
Tag filter resolution.

Tricks whose list call accepts tag filters send ``native_filters`` with the
request. The others look up every tagged resource once per run through the
Resource Groups Tagging API and match candidates by their trailing resource
id.
"""
import logging
from typing import Dict, FrozenSet, Iterable, List, Sequence

from ..core.config import TagFilter


logger = logging.getLogger(__name__)


def native_filters(tags: Sequence[TagFilter]) -> List[Dict]:
    """EC2 / Auto Scaling ``Filters`` for the requested tags."""
    return [tag.to_native_filter() for tag in tags]


def fetch_tagged_arns(
    tagging_client,
    resource_types: Sequence[str],
    tags: Sequence[TagFilter],
) -> FrozenSet[str]:
    """ARNs of every resource of the given types matching all tag filters."""
    arns = set()
    paginator = tagging_client.get_paginator('get_resources')

    for page in paginator.paginate(
        ResourceTypeFilters=list(resource_types),
        TagFilters=[tag.to_tagging_filter() for tag in tags],
    ):
        for mapping in page.get('ResourceTagMappingList', []):
            if mapping.get('ResourceARN'):
                arns.add(mapping['ResourceARN'])

    logger.debug(f"Tag lookup for {', '.join(resource_types)} matched {len(arns)} resources")
    return frozenset(arns)


def resource_id(arn_or_id: str) -> str:
    """Trailing resource id of an ARN (or an id passed as is).

    ``arn:aws:dynamodb:eu-west-1:123:table/orders`` gives ``orders``; ARNs
    without a path such as ``arn:aws:rds:eu-west-1:123:db:orders`` fall back
    to the last ``:`` segment.
    """
    trailing = arn_or_id.rsplit('/', 1)[-1]
    if trailing.startswith('arn:'):
        trailing = trailing.rsplit(':', 1)[-1]
    return trailing


def resource_ids(arns: Iterable[str]) -> FrozenSet[str]:
    return frozenset(resource_id(arn) for arn in arns)


def is_tagged(arn_or_id: str, tagged_arns: Iterable[str]) -> bool:
    """Whether a candidate's trailing id is among the tagged ARNs."""
    return resource_id(arn_or_id) in resource_ids(tagged_arns)
