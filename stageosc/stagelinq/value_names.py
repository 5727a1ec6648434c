#!/usr/bin/env python3
"""
StagelinQ Value Names

State paths are per-deck, 1-indexed: /Engine/Deck1/... through /Engine/DeckN/...
"""


class DeckValueNames:
    """Helper class for generating deck-specific value names."""

    def __init__(self, deck_index: int):
        self.deck_index = deck_index

    def track_artist_name(self) -> str:
        return f"/Engine/Deck{self.deck_index}/Track/ArtistName"

    def track_song_name(self) -> str:
        return f"/Engine/Deck{self.deck_index}/Track/SongName"

    def beat(self) -> str:
        """not a StateMap path: the address beat pulses are sent to"""
        return f"/Engine/Deck{self.deck_index}/Beat"


def track_name_paths(deck_count: int) -> list[str]:
    """artist and song name paths for decks 1..deck_count"""
    paths = []
    for deck_index in range(1, deck_count + 1):
        deck = DeckValueNames(deck_index)
        paths.extend([deck.track_artist_name(), deck.track_song_name()])
    return paths
