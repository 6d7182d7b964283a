"""Frame decoders for the capture pipeline (compressed frame in, raw PCM out)."""

from abc import ABC, abstractmethod

import discord

# -------------------------------------------------------------- #
# Decoders
# -------------------------------------------------------------- #


class FrameDecoder(ABC):
    """Decodes one transport frame into s16le 48 kHz stereo PCM."""

    @abstractmethod
    def decode(self, frame: bytes) -> bytes:
        pass


class OpusFrameDecoder(FrameDecoder):
    """Opus packets to PCM using py-cord's libopus binding; one decoder state per participant."""

    def __init__(self):
        self._decoder = discord.opus.Decoder()

    def decode(self, frame: bytes) -> bytes:
        return self._decoder.decode(frame)


class PassthroughDecoder(FrameDecoder):
    """For transports that already deliver decoded PCM."""

    def decode(self, frame: bytes) -> bytes:
        return frame
