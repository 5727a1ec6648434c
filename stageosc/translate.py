#!/usr/bin/env python3
"""turn StagelinQ events into outbound OSC messages"""

import math
from typing import NamedTuple

from stageosc.stagelinq import BeatInfo, DeckValueNames, PlayerInfo, State


class OutboundMessage(NamedTuple):
    """an OSC address and its single argument"""

    address: str
    value: str | float


def state_to_message(state: State) -> OutboundMessage | None:
    """the text of a state change, sent to the state's own path

    Only the "string" variant of the value is forwarded; numeric and
    boolean states produce nothing.
    """
    text = state.value.get("string")
    if not isinstance(text, str):
        return None
    return OutboundMessage(address=state.name, value=text)


class BeatDebouncer:
    """Decide which beat samples are worth sending

    Devices report the fractional beat position many times per beat.  Per
    deck, a sample is sent only when the whole beat number moved forward by
    at least one, or went backwards (track reloaded, jumped to a cue).
    """

    def __init__(self, deck_count: int):
        self.last_beats: list[int] = [0] * deck_count

    @property
    def deck_count(self) -> int:
        """number of deck slots being tracked"""
        return len(self.last_beats)

    def update(self, index: int, player: PlayerInfo) -> bool:
        """True if this sample for deck slot index should be sent"""
        # total_beats stays 0 until the deck has something loaded and analysed
        if not player.total_beats > 0:
            return False
        if not math.isfinite(player.beat):
            return False

        beat = math.floor(player.beat)
        last = self.last_beats[index]
        if beat >= last + 1 or beat < last:
            self.last_beats[index] = beat
            return True
        return False

    def process(self, beatinfo: BeatInfo) -> list[OutboundMessage]:
        """messages for every deck in the frame that passed the filter

        Samples beyond the configured deck count are ignored.
        """
        messages = []
        for index, player in enumerate(beatinfo.players[: self.deck_count]):
            if self.update(index, player):
                messages.append(
                    OutboundMessage(address=DeckValueNames(index + 1).beat(), value=player.beat)
                )
        return messages
