"""Compact equaliser protocol: function codes, filter types and converters.

Filter parameters travel as small integers: frequency and Q as indices into
lookup tables, gain in steps of -0.5 dB. The tables are supplied by the
caller, so one converter class serves both protocol versions (v1 uses
twelfth-octave frequency bands, v2 twenty-fourth-octave bands).
"""

from __future__ import annotations

import enum
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field


class Code(enum.IntEnum):
    """Remote function codes."""

    INVALID = 0
    LOGIN = 1
    SET_PASSWORD = 2

    SET_PASSTHROUGH = 16
    GET_INPUTS = 17
    GET_INPUT = 18
    SET_INPUT = 19
    SET_INPUT_FORMAT = 20
    GET_OUTPUTS = 21
    GET_OUTPUT = 22
    SET_OUTPUT = 23
    SET_OUTPUT_FORMAT = 24

    GET_PRESETS = 64
    GET_PRESET = 65
    GET_PRESET_NAMES = 66
    SET_PRESET = 67
    SAVE_PRESET = 68
    RENAME_PRESET = 69
    DELETE_PRESET = 70

    SET_FILTER_COUNT = 80
    ADD_FILTER = 81
    REMOVE_FILTER = 82
    SET_FILTER_TYPE = 83
    SET_FILTER_FREQ = 84
    SET_FILTER_GAIN = 85
    SET_FILTER_Q = 86

    USER = 96
    MAX = 127


@dataclass
class Filter:
    """A filter in physical units: frequency in Hz, gain in dB and Q."""

    type: int
    f: float
    g: float
    q: float


@dataclass
class Preset:
    """A named list of filters in physical units."""

    name: str
    filters: list[Filter] = field(default_factory=list)


@dataclass
class ProtoFilter:
    """A filter as it travels on the wire: all fields are small integers."""

    type: int
    freq: int
    gain: int
    q: int


@dataclass
class ProtoPreset:
    """A named list of wire filters."""

    name: str
    filters: list[ProtoFilter] = field(default_factory=list)


def _nearest_index(table: Sequence[float], value: float) -> int:
    """Index of the table entry closest to ``value`` on a logarithmic scale."""
    for i, (lower, upper) in enumerate(zip(table, table[1:])):
        if upper >= value:
            centre = math.sqrt(lower * upper)
            return i if value <= centre else i + 1
    raise ValueError(f"{value} lies beyond the lookup table")


def _table_value(table: Sequence[float], i: int) -> float:
    if 0 <= i < len(table):
        return table[i]
    return 0.0


def _round_half_away(x: float) -> int:
    return int(math.copysign(math.floor(abs(x) + 0.5), x))


class Converter:
    """Converts filters and presets between physical units and wire form."""

    def __init__(self, freq_table: Iterable[float], q_table: Iterable[float]) -> None:
        self.freq_table = tuple(freq_table)
        self.q_table = tuple(q_table)

    def freq_to_proto(self, f: float) -> int:
        """Index of the frequency band nearest to ``f``."""
        return _nearest_index(self.freq_table, f)

    def freq_from_proto(self, i: int) -> float:
        """Frequency of band ``i``, or 0.0 if there is no such band."""
        return _table_value(self.freq_table, i)

    def gain_to_proto(self, g: float) -> int:
        """Gain in dB as a signed byte counting steps of -0.5 dB."""
        if not math.isfinite(g):
            raise ValueError(f"gain must be finite, not {g}")
        steps = _round_half_away(g * -2.0)
        if not -128 <= steps <= 127:
            raise ValueError(f"gain {g} dB does not fit the wire range")
        return steps

    def gain_from_proto(self, g: int) -> float:
        """Gain in dB for a wire value."""
        return g * -0.5

    def q_to_proto(self, q: float) -> int:
        """Index of the Q table entry nearest to ``q``."""
        return _nearest_index(self.q_table, q)

    def q_from_proto(self, i: int) -> float:
        """Q of table entry ``i``, or 0.0 if there is no such entry."""
        return _table_value(self.q_table, i)

    def filter_to_proto(self, filter: Filter) -> ProtoFilter:
        return ProtoFilter(
            type=filter.type,
            freq=self.freq_to_proto(filter.f),
            gain=self.gain_to_proto(filter.g),
            q=self.q_to_proto(filter.q),
        )

    def filter_from_proto(self, filter: ProtoFilter) -> Filter:
        return Filter(
            type=filter.type,
            f=self.freq_from_proto(filter.freq),
            g=self.gain_from_proto(filter.gain),
            q=self.q_from_proto(filter.q),
        )

    def preset_to_proto(self, preset: Preset) -> ProtoPreset:
        return ProtoPreset(preset.name, [self.filter_to_proto(f) for f in preset.filters])

    def preset_from_proto(self, preset: ProtoPreset) -> Preset:
        return Preset(preset.name, [self.filter_from_proto(f) for f in preset.filters])

    def presets_to_proto(self, presets: Iterable[Preset]) -> list[ProtoPreset]:
        return [self.preset_to_proto(p) for p in presets]

    def presets_from_proto(self, presets: Iterable[ProtoPreset]) -> list[Preset]:
        return [self.preset_from_proto(p) for p in presets]