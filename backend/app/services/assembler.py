"""
Result assembly: fault-isolated normalization, ordering and the post-fetch cap.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from app.errors import ParseError
from app.models.mail import NormalizedMessage, RawMessage
from app.services.normalizer import DetailLevel, normalize

logger = logging.getLogger(__name__)


def normalize_batch(
    raw_messages: Iterable[RawMessage],
    detail: DetailLevel = DetailLevel.SUMMARY,
) -> List[NormalizedMessage]:
    """
    Normalize every message, skipping (and logging) those that fail to parse.

    One bad message never removes or alters any other message's result.
    """
    results: List[NormalizedMessage] = []
    for raw in raw_messages:
        try:
            results.append(normalize(raw, detail))
        except ParseError as exc:
            logger.warning(f"Skipping message UID {raw.uid}: {exc}")
    return results


def _sort_key(message: NormalizedMessage):
    # Missing dates sort after every dated message
    if message.date is None:
        return (False, 0.0)
    return (True, message.date.timestamp())


def assemble(
    messages: Sequence[NormalizedMessage],
    limit: Optional[int] = None,
) -> List[NormalizedMessage]:
    """
    Order messages newest first and cap the result at `limit`.

    The sort is stable: messages with equal (or missing) dates keep the order
    in which they were fetched.
    """
    ordered = sorted(messages, key=_sort_key, reverse=True)
    if limit is not None:
        ordered = ordered[:limit]
    return ordered
