from __future__ import annotations

import logging

from relay_bot_orx.turn_store import TurnStore
from relay_bot_orx.turns import Turn, serialized_length

logger = logging.getLogger(__name__)


async def build_window(
    store: TurnStore,
    key: str,
    *,
    incoming_length: int,
    char_limit: int,
) -> list[Turn]:
    """Return the stored turns that fit the budget, oldest first.

    The log is walked newest to oldest one rank at a time. A turn that would
    push the running total over ``char_limit`` is removed from the store and
    the walk continues, so shorter older turns can still be kept. The
    incoming message is charged first and is never evicted here.

    Store errors propagate; turns removed before the error stay removed.
    """
    total = incoming_length
    kept: list[Turn] = []
    evicted = 0

    rank = 0
    last_removed: Turn | None = None
    while True:
        turn = await store.read_descending(key, rank)
        if turn is None:
            break

        if turn == last_removed:
            # The member did not match what was stored; step over it.
            last_removed = None
            rank += 1
            continue
        last_removed = None

        length = serialized_length(turn)
        if total + length <= char_limit:
            total += length
            kept.append(turn)
            rank += 1
            continue

        await store.remove(key, turn)
        last_removed = turn
        evicted += 1
        # Removing shifts every older member up one rank.

    if evicted:
        logger.debug(
            "history_window_evicted key=%s evicted=%d kept=%d total_chars=%d",
            key,
            evicted,
            len(kept),
            total,
        )

    kept.reverse()
    return kept
