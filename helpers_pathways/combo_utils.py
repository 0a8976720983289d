"""
Event cohort bit encoding utilities.

Each instantiated event cohort gets a dense index (1..N, ascending by cohort
id) and a bit value 2**(index-1). A step's combo code is the bitwise OR of the
bit values of the event cohorts active in that step. Codes are plain Python
ints, so there is no cap on the number of event cohorts.
"""

import logging
from typing import Dict, Iterable, List, Optional

import pandas as pd

from helpers_pathways.errors import ConfigurationError, DecodingError


class BitIndexMap:
    """Bijective mapping event_cohort_id <-> (cohort_index, bit_value)."""

    def __init__(self, event_cohort_ids: List[int]):
        self._ids = list(event_cohort_ids)
        self._index_by_id: Dict[int, int] = {
            cohort_id: position for position, cohort_id in enumerate(self._ids, start=1)
        }
        # Largest bit first, used by greedy decoding
        self._bits_descending = [
            (1 << (position - 1), position) for position in range(len(self._ids), 0, -1)
        ]

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, event_cohort_id) -> bool:
        return event_cohort_id in self._index_by_id

    def __repr__(self) -> str:
        return f"BitIndexMap({self._ids})"

    @property
    def event_cohort_ids(self) -> List[int]:
        return list(self._ids)

    @property
    def max_code(self) -> int:
        """Combo code with every event cohort set."""
        return (1 << len(self._ids)) - 1

    def cohort_index(self, event_cohort_id: int) -> int:
        try:
            return self._index_by_id[event_cohort_id]
        except KeyError:
            raise KeyError(f"Event cohort {event_cohort_id} is not in the bit index map") from None

    def bit_value(self, event_cohort_id: int) -> int:
        return 1 << (self.cohort_index(event_cohort_id) - 1)

    def event_cohort_id(self, cohort_index: int) -> int:
        if cohort_index < 1 or cohort_index > len(self._ids):
            raise KeyError(f"Cohort index {cohort_index} is out of range 1..{len(self._ids)}")
        return self._ids[cohort_index - 1]

    def bits_descending(self):
        return list(self._bits_descending)

    def to_frame(self) -> pd.DataFrame:
        """Return event_cohort_id / cohort_index / bit_value rows in index order."""
        return pd.DataFrame(
            {
                'event_cohort_id': self._ids,
                'cohort_index': list(range(1, len(self._ids) + 1)),
                'bit_value': pd.Series(
                    [1 << (i - 1) for i in range(1, len(self._ids) + 1)], dtype=object
                ),
            }
        )


def assign_bit_index(event_cohort_ids: Iterable[int], logger: Optional[logging.Logger] = None) -> BitIndexMap:
    """
    Build the bit index map from instantiated event cohort ids.

    Args:
        event_cohort_ids: Event cohort ids with a nonzero occurrence count
        logger: Logger instance

    Returns:
        BitIndexMap ordered by ascending event cohort id

    Raises:
        ConfigurationError: if no event cohort ids are given
    """
    logger = logger or logging.getLogger(__name__)
    unique_ids = sorted({int(cohort_id) for cohort_id in event_cohort_ids})
    if not unique_ids:
        raise ConfigurationError("No instantiated event cohorts to build a bit index from")

    bit_index = BitIndexMap(unique_ids)
    logger.debug(f"Assigned bit index for {len(bit_index)} event cohorts: {unique_ids}")
    return bit_index


def encode_combo(event_cohort_ids: Iterable[int], bit_index: BitIndexMap) -> int:
    """OR together the bit values of the given event cohorts."""
    code = 0
    for cohort_id in event_cohort_ids:
        code |= bit_index.bit_value(cohort_id)
    return code


def decode_combo(combo_code: int, bit_index: BitIndexMap) -> List[int]:
    """
    Recover the cohort indexes composing a combo code.

    Greedy decomposition: take the largest known bit value not above the
    remaining value until nothing remains.

    Returns:
        Cohort indexes in ascending order

    Raises:
        DecodingError: if the code is not positive or cannot be decomposed exactly
    """
    code = int(combo_code)
    if code <= 0:
        raise DecodingError(code)

    remaining = code
    indexes = []
    for bit, cohort_index in bit_index.bits_descending():
        if bit <= remaining:
            indexes.append(cohort_index)
            remaining -= bit
        if remaining == 0:
            break

    if remaining != 0:
        raise DecodingError(code, remaining)
    return sorted(indexes)


def decode_combo_ids(combo_code: int, bit_index: BitIndexMap) -> List[int]:
    """Decode a combo code straight to event cohort ids (ascending index order)."""
    return [bit_index.event_cohort_id(i) for i in decode_combo(combo_code, bit_index)]
